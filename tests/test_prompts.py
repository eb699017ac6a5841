"""Tests for prompt assembly."""

import pytest

from emr_assistant.models.chat import Classification, ConversationTurn, FormField, PageContext
from emr_assistant.services.classifier import QueryClassifier
from emr_assistant.services.config import Settings
from emr_assistant.services.prompts import PromptAssembler, build_url_directory, url_group
from emr_assistant.services.url_mapper import UrlMapper

BASE_URL = "https://clinic.example.com"


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def assembler(settings):
    return PromptAssembler(settings.ASSISTANT_NAME, settings.generic_system_prompt, settings.MAX_PROMPT_CHARS)


def section(text, title):
    """Body of a '**title:**' block up to the next bold heading."""
    start = text.index(f"**{title}:**") + len(title) + 5
    end = text.find("**", start)
    return text[start:end if end != -1 else None]


def test_non_app_message_gets_generic_persona(assembler, settings):
    classification = QueryClassifier().classify("hello")
    prompts = assembler.assemble(classification, "", {}, "hello", None, [])

    assert prompts.system_prompt == settings.generic_system_prompt
    assert prompts.user_prompt == "hello"
    assert "Knowledge Base (USE THIS AS PRIMARY SOURCE)" not in prompts.system_prompt


def test_navigation_prompt_lists_practitioner_under_create(assembler, sample_knowledge):
    message = "Where can I add a practitioner?"
    classification = QueryClassifier().classify(message)
    url_map = UrlMapper(BASE_URL).build_url_map(sample_knowledge)

    prompts = assembler.assemble(classification, sample_knowledge[:500], url_map, message)

    assert url_map["Add Practitioner"] == f"{BASE_URL}/practitioners/create"
    create_group = section(prompts.user_prompt, "CREATE/ADD Actions")
    assert f"  - Add Practitioner → {BASE_URL}/practitioners/create\n" in create_group
    assert "Navigation Query Detected" in prompts.system_prompt
    assert prompts.user_prompt.endswith(f"**User Question:**\n{message}")


def test_system_prompt_block_order(assembler):
    classification = Classification(is_app_related=True, is_navigation_query=True)
    prompts = assembler.assemble(classification, "KB EXCERPT", {}, "how do i book?")
    system = prompts.system_prompt

    positions = [
        system.index("**Your Role:**"),
        system.index("**Important Priority Rules:**"),
        system.index("**Response Guidelines:**"),
        system.index("**CRITICAL: Navigation Query Detected**"),
        system.index("**Application Knowledge Base (USE THIS AS PRIMARY SOURCE):**"),
    ]
    assert positions == sorted(positions)
    assert system.rstrip().endswith("KB EXCERPT")
    assert "Current Context" not in system


def test_url_groups():
    assert url_group("Add Practitioner", "/practitioners/create") == "create"
    assert url_group("Patients", "/patients/create") == "create"
    assert url_group("Edit Patient", "/patients") == "edit"
    assert url_group("Invite patient", "/patients") == "invite"
    assert url_group("Patients (index)", "/patients") == "list"
    assert url_group("view patient", "/patients") == "view"
    assert url_group("Dashboard", "/dashboard") == "other"


def test_url_directory_strips_trailing_punctuation_and_orders_groups():
    directory = build_url_directory({
        "Dashboard": f"{BASE_URL}/dashboard",
        "view patient": f"{BASE_URL}/patients).",
        "Add Practitioner": f"{BASE_URL}/practitioners/create",
    })

    assert f"  - view patient → {BASE_URL}/patients\n" in directory
    titles = ["CREATE/ADD Actions", "VIEW/SHOW Actions", "Other Pages"]
    positions = [directory.index(f"**{title}:**") for title in titles]
    assert positions == sorted(positions)
    assert "EDIT/UPDATE Actions" not in directory


def test_current_page_context_block(assembler):
    message = "What is this page for?"
    classification = QueryClassifier().classify(message)
    page = PageContext(
        url=f"{BASE_URL}/patients/create",
        title="  Create   Patient ",
        html="<html><head><script>var secret = 1;</script></head><body><h1>New patient</h1><p>" + "word " * 600 + "</p></body></html>",
        form_data=[
            FormField(name="first_name", type="text", value="Ada"),
            FormField(name="dob", type="date", value="", placeholder="YYYY-MM-DD"),
            FormField(type="email"),
        ],
    )

    prompts = assembler.assemble(classification, "", {}, message, page)
    user = prompts.user_prompt

    assert "**Current Page Context (User asked about THIS page specifically):**" in user
    assert f"URL: {BASE_URL}/patients/create\n" in user
    assert "Page Title: Create Patient\n" in user
    assert "var secret" not in user
    visible = user.split("Visible Text Content:\n", 1)[1].split("\n", 1)[0]
    assert visible.startswith("New patient word")
    assert len(visible) == 1500
    assert "- first_name (text): filled\n" in user
    assert "- dob (date): empty - YYYY-MM-DD\n" in user
    assert "- unnamed (email): empty\n" in user
    assert "**Current Context:**" in prompts.system_prompt


def test_general_question_only_tags_url(assembler):
    message = "How do invoices work?"
    classification = QueryClassifier().classify(message)
    page = PageContext(url=f"{BASE_URL}/dashboard", text="Dashboard widgets")

    prompts = assembler.assemble(classification, "", {}, message, page)

    assert f"User is currently on: {BASE_URL}/dashboard\n" in prompts.user_prompt
    assert "(But this is a general question - answer from Knowledge Base only)" in prompts.user_prompt
    assert "Dashboard widgets" not in prompts.user_prompt


def test_only_last_three_history_turns(assembler):
    history = [ConversationTurn(user=f"q{i}", assistant=f"a{i}") for i in range(5)]
    classification = Classification(is_app_related=True)

    prompts = assembler.assemble(classification, "", {}, "next?", None, history)

    assert "User: q1\n" not in prompts.user_prompt
    for i in (2, 3, 4):
        assert f"User: q{i}\nAssistant: a{i}\n\n" in prompts.user_prompt
    assert prompts.user_prompt.index("User: q2") < prompts.user_prompt.index("**User Question:**")


def test_budget_drops_history_first(settings):
    assembler = PromptAssembler(settings.ASSISTANT_NAME, settings.generic_system_prompt, 6000)
    classification = Classification(is_app_related=True)
    history = [ConversationTurn(user="u" * 1500, assistant="a" * 1500)]

    prompts = assembler.assemble(classification, "k" * 2000, {}, "question", None, history)

    assert "u" * 1500 not in prompts.user_prompt
    assert "k" * 2000 in prompts.system_prompt
    assert len(prompts.system_prompt) + len(prompts.user_prompt) <= 6000


def test_budget_truncates_excerpt_after_history(settings):
    assembler = PromptAssembler(settings.ASSISTANT_NAME, settings.generic_system_prompt, 6000)
    classification = Classification(is_app_related=True)
    history = [ConversationTurn(user="u" * 500, assistant="a" * 500)]

    prompts = assembler.assemble(classification, "k" * 10000, {}, "question", None, history)

    assert "u" * 500 not in prompts.user_prompt
    assert len(prompts.system_prompt) + len(prompts.user_prompt) <= 6000
    assert "k" * 3000 in prompts.system_prompt
    assert "k" * 4500 not in prompts.system_prompt
    assert prompts.user_prompt.endswith("**User Question:**\nquestion")
