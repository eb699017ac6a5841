"""
Prompt assembly for the chat assistant
"""
from typing import Dict, List, Optional, Sequence

import structlog

from emr_assistant.models.chat import Classification, ConversationTurn, PageContext, PromptPair
from emr_assistant.utils.text import clean_text, html_to_text

logger = structlog.get_logger()

PAGE_TEXT_CHARS = 1500
HISTORY_TURNS = 3
URL_TRAILING_PUNCTUATION = ").,;:!?"

ROLE_BLOCK = """**Your Role:**
- Guide users through workflows and processes in the EMR system
- Answer questions about how to accomplish tasks in the application
- Explain features, permissions, roles, and access control
- Provide step-by-step instructions when needed
- Help users understand pages, forms, and available actions

"""

CURRENT_PAGE_BLOCK = """**Current Context:**
- The user is asking about the CURRENT PAGE they're viewing
- Use the page context provided below to answer their question
- Explain the page's purpose, fields, buttons, and available actions
- Reference specific elements visible on the page

"""

PRIORITY_BLOCK = """**Important Priority Rules:**
- ALWAYS prioritize information from the Knowledge Base below
- The Knowledge Base is the authoritative, complete description of the application
- For general questions (e.g. 'where can I add a practitioner?'), rely on the Knowledge Base
- If the Knowledge Base only partly covers the question, share what it does say and guide the user from there
- Use related information (e.g. appointment creation mentions patient search) to help the user
- Never answer with 'I cannot provide' or 'I am limited'; always give helpful guidance from the available context
- If the exact answer is missing, infer a reasonable one from related Knowledge Base entries

"""

RESPONSE_GUIDELINES = """**Response Guidelines:**
- Be concise and actionable (under 200 words for simple queries)
- Use bullet points for steps or lists
- Give exact navigation paths from the Knowledge Base when available (e.g. 'Go to Settings > Practitioners > Add Practitioner')
- **Format links properly:** always use markdown link format [Text](URL), never bare URLs or URLs in parentheses
- **Link text clarity:** link text must describe the destination (e.g. 'Create Appointment' for /appointments/create, 'Appointments List' for /appointments)
- With partial information, say what you know and where the user can find more
- Explain the reason behind constraints and permissions
- Never fabricate information; stay within the Knowledge Base but use all of it
- Stay helpful and constructive even when information is incomplete
- **UI Presentation:** format responses cleanly with markdown links, bullet points and clear structure

"""

NAVIGATION_BLOCK = """**CRITICAL: Navigation Query Detected**
- The user wants to know HOW or WHERE to do something, or wants to be taken to a page
- Every answer to a HOW or WHERE question MUST include the full absolute URL
- Give COMPLETE CONTEXT: what the page is for, what can be done there, who can access it, and important constraints
- **URL FORMATTING - CRITICAL:**
  * ALWAYS write URLs as markdown links: [Link Text](URL)
  * Link text must describe the destination (e.g. 'Create Appointment' for /appointments/create, 'Appointments List' for /appointments)
  * Use the URL EXACTLY as it appears in the Page URLs list
  * NEVER show URLs as plain text, inside bare parentheses, or on their own line
  * CORRECT: 'Go to [Create Appointment](http://domain.com/appointments/create) to create a new appointment.'
  * WRONG: 'Go to (http://domain.com/appointments/create)' or 'http://domain.com/appointments/create' or '[Appointments → Create](http://domain.com/appointments)'
- **URLs must be clean: no trailing punctuation, parentheses, or periods inside the link**
- The Page URLs below are already absolute
- **Match the requested action with the right page URL:**
  * 'create' or 'add' → the /create URL (e.g. /patients/create, /appointments/create)
  * 'edit' or 'update' → the parent route provided for the edit page
  * 'view' or 'list' → the index URL (e.g. /patients, /appointments)
  * 'show' or 'details' → the parent route provided for the details page
  * 'invite' → the /invite or /invitations URL
- **Routes with dynamic segments (like {id} or [appointment_id]) have been mapped to their parent routes:**
  * The URL given is the parent/index route (e.g. /appointments)
  * Add navigation instructions: 'Go to [parent route], select an item, then [action]'
  * Example: 'To manage an appointment, go to [Appointments](http://domain.com/appointments), select an appointment from the list, then click Manage'
- **NEVER include dynamic segments like {id} or [appointment_id] in URLs**
- **NEVER invent URLs that do not exist (like /appointments/manage-appointment without an ID)**
- If a mapping includes '→ navigate via', follow that navigation instruction
- Always provide BOTH the relevant Knowledge Base context AND the correct URL with navigation steps
- Keep responses under 200 words and do not repeat yourself
- **RESPONSE FORMATTING:**
  * Clear, grammatical sentences with the link woven into the sentence
  * For direct routes: 'To create a patient, go to [Create Patient](http://domain.com/patients/create). This page allows you to [brief description].'
  * For dynamic routes: 'To manage an appointment, go to [Appointments](http://domain.com/appointments), select an appointment from the list, then click Manage. This allows you to [brief description].'
- **CRITICAL URL FORMATTING - READ CAREFULLY:**
  * The URL inside the parentheses MUST end cleanly with NO punctuation
  * Punctuation ALWAYS goes AFTER the closing parenthesis, NEVER inside
  * CORRECT:
    - [Create Appointment](http://domain.com/appointments/create).
    - [Patient List](http://domain.com/patients), then select a patient.
  * WRONG:
    - [Create Appointment](http://domain.com/appointments/create).) ← extra closing paren
    - [Create Appointment](http://domain.com/appointments/create.) ← period inside URL
    - [Create Appointment](http://domain.com/appointments/create)) ← extra closing paren
  * Check every link before writing it: URL ends cleanly, punctuation outside
- For 'how can I' or 'where can I' questions, give complete instructions AND the link for the matching action, never the link alone

"""

URL_DIRECTORY_FOOTER = """**Important:** Match the user's requested action (create, edit, view, list, invite) with the corresponding URL from the groups above.
**CRITICAL URL FORMATTING:**
- Use URLs EXACTLY as shown above; they are already cleaned
- Format links as: [Link Text](URL)
- The URL inside the parentheses must NOT have trailing punctuation
- Put periods, commas and other punctuation AFTER the closing parenthesis
- Example: [Create Appointment](http://domain.com/appointments/create). ← period is AFTER the link
- WRONG: [Create Appointment](http://domain.com/appointments/create).) ← punctuation inside the link

"""

# Display order of the URL directory groups
URL_GROUP_TITLES = (
    ("create", "CREATE/ADD Actions"),
    ("edit", "EDIT/UPDATE Actions"),
    ("view", "VIEW/SHOW Actions"),
    ("list", "LIST/INDEX Pages"),
    ("invite", "INVITE Actions"),
    ("other", "Other Pages"),
)


def url_group(label: str, url: str) -> str:
    """Directory group for a URL map entry, judged from its label and URL"""
    label = label.lower()
    url = url.lower()

    if "create" in label or "add" in label or "/create" in url:
        return "create"
    if "edit" in label or "update" in label or "/edit" in url:
        return "edit"
    if "invite" in label or "/invite" in url or "/invitations" in url:
        return "invite"
    if "list" in label or "index" in label:
        return "list"
    if "view" in label or "show" in label or "details" in label:
        return "view"
    return "other"


def build_url_directory(url_map: Dict[str, str]) -> str:
    groups: Dict[str, List[str]] = {key: [] for key, _ in URL_GROUP_TITLES}
    for label, url in url_map.items():
        groups[url_group(label, url)].append(f"  - {label} → {url.rstrip(URL_TRAILING_PUNCTUATION)}\n")

    directory = "**Page URLs Available (Match action with correct URL):**\n\n"
    for key, title in URL_GROUP_TITLES:
        if groups[key]:
            directory += f"**{title}:**\n" + "".join(groups[key]) + "\n"

    return directory + URL_DIRECTORY_FOOTER


def describe_form_fields(page_context: PageContext) -> str:
    lines = []
    for field in page_context.form_data or []:
        status = "filled" if field.value else "empty"
        line = f"- {field.name or 'unnamed'} ({field.type or 'text'}): {status}"
        if field.placeholder:
            line += f" - {field.placeholder}"
        lines.append(line + "\n")
    return "".join(lines)


def visible_page_text(page_context: PageContext) -> str:
    text = page_context.text or html_to_text(page_context.html or "")
    return text[:PAGE_TEXT_CHARS]


class PromptAssembler:
    """Builds the system/user prompt pair for one chat message"""

    def __init__(self, assistant_name: str, generic_system_prompt: str, max_prompt_chars: int):
        self.assistant_name = assistant_name
        self.generic_system_prompt = generic_system_prompt
        self.max_prompt_chars = max_prompt_chars

    def assemble(
        self,
        classification: Classification,
        knowledge_excerpt: str,
        url_map: Dict[str, str],
        message: str,
        page_context: Optional[PageContext] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> PromptPair:
        if not classification.is_app_related:
            return PromptPair(system_prompt=self.generic_system_prompt, user_prompt=message)

        system_prompt = self.build_system_prompt(classification, knowledge_excerpt)
        user_prompt = self.build_user_prompt(classification, url_map, message, page_context, history)

        overflow = len(system_prompt) + len(user_prompt) - self.max_prompt_chars
        if overflow > 0 and history:
            logger.info("Prompt over budget, dropping conversation history", overflow=overflow)
            user_prompt = self.build_user_prompt(classification, url_map, message, page_context, ())
            overflow = len(system_prompt) + len(user_prompt) - self.max_prompt_chars

        if overflow > 0 and knowledge_excerpt:
            keep = max(0, len(knowledge_excerpt) - overflow)
            logger.info("Prompt over budget, truncating knowledge excerpt", overflow=overflow, excerpt_kept=keep)
            system_prompt = self.build_system_prompt(classification, knowledge_excerpt[:keep])

        return PromptPair(system_prompt=system_prompt, user_prompt=user_prompt)

    def build_system_prompt(self, classification: Classification, knowledge_excerpt: str) -> str:
        prompt = (
            f"You are {self.assistant_name}, an intelligent EMR (Electronic Medical Records) "
            "application assistant.\n\n"
        )
        prompt += ROLE_BLOCK
        prompt += CURRENT_PAGE_BLOCK if classification.is_current_page_query else PRIORITY_BLOCK
        prompt += RESPONSE_GUIDELINES

        if classification.is_navigation_query:
            prompt += NAVIGATION_BLOCK

        if knowledge_excerpt:
            prompt += "**Application Knowledge Base (USE THIS AS PRIMARY SOURCE):**\n\n"
            prompt += f"{knowledge_excerpt}\n\n"

        return prompt

    def build_user_prompt(
        self,
        classification: Classification,
        url_map: Dict[str, str],
        message: str,
        page_context: Optional[PageContext],
        history: Sequence[ConversationTurn],
    ) -> str:
        prompt = ""

        recent = list(history)[-HISTORY_TURNS:]
        if recent:
            prompt += "**Recent Conversation:**\n\n"
            for turn in recent:
                prompt += f"User: {turn.user}\nAssistant: {turn.assistant}\n\n"

        if classification.is_navigation_query and url_map:
            prompt += build_url_directory(url_map)

        if classification.is_current_page_query and page_context:
            prompt += "**Current Page Context (User asked about THIS page specifically):**\n\n"
            if page_context.url:
                prompt += f"URL: {page_context.url}\n"
            if page_context.title:
                prompt += f"Page Title: {clean_text(page_context.title)}\n"

            page_text = visible_page_text(page_context)
            if page_text:
                prompt += f"\nVisible Text Content:\n{page_text}\n"

            fields = describe_form_fields(page_context)
            if fields:
                prompt += f"\nForm Fields:\n{fields}"

            prompt += "\n"
        elif page_context and page_context.url:
            prompt += f"**Context:**\nUser is currently on: {page_context.url}\n"
            prompt += "(But this is a general question - answer from Knowledge Base only)\n\n"

        prompt += f"**User Question:**\n{message}"
        return prompt
