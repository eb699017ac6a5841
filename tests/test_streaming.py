"""Tests for the streaming relay and link repair."""

import asyncio

import pytest

from emr_assistant.models.chat import PromptPair
from emr_assistant.services.streaming import (
    BUFFER_LIMIT,
    StreamRelay,
    StreamState,
    StreamStatus,
    flush,
    process_chunk,
    repair_links,
    settled_length,
)

from conftest import FakeLLM

ERROR = "I encountered an error processing your request. Please try again."


def feed(chunks):
    """Run chunks through process_chunk and flush, returning everything emitted."""
    state = StreamState()
    emitted = []
    for chunk in chunks:
        state, output = process_chunk(state, chunk)
        emitted.append(output)
    state, output = flush(state)
    emitted.append(output)
    return "".join(emitted), state


def collect(relay, prompts):
    async def run():
        return [chunk async for chunk in relay.relay(prompts)]
    return asyncio.run(run())


@pytest.mark.parametrize("raw,expected", [
    ("[Create](http://x/y.)", "[Create](http://x/y)"),
    ("[Create](http://x/y).)", "[Create](http://x/y)."),
    ("[Edit](http://x/e)!)", "[Edit](http://x/e)!"),
    ("[Create](http://x/y)).", "[Create](http://x/y)."),
    ("See [List](http://x/list,;) now", "See [List](http://x/list) now"),
    ("[Edit](http://x/e)!", "[Edit](http://x/e)!"),
    ("no links at all.", "no links at all."),
])
def test_repair_links(raw, expected):
    assert repair_links(raw) == expected


def test_documented_example_single_chunk():
    """The period survives once and no paren follows the link's closing paren."""
    output, _ = feed(["[Create](http://x/y).)"])
    assert output.count("[Create](http://x/y).") == 1
    assert "(http://x/y))" not in output
    assert output == "[Create](http://x/y)."


def test_extra_paren_split_across_chunks_is_dropped():
    output, _ = feed(["[Create](http://x/y)", ".", ")", " next"])
    assert output == "[Create](http://x/y). next"


def test_link_split_across_chunks_is_repaired():
    output, state = feed(["Go to [Crea", "te](http://x/app", "ointments/create.", ") now."])
    assert output == "Go to [Create](http://x/appointments/create) now."
    assert state.chunks == 4


def test_pending_link_is_held_back():
    state, output = process_chunk(StreamState(), "Open [Patients](http://x/patients")
    assert output == "Open "
    assert settled_length(state.buffer) == len("Open ")

    state, output = process_chunk(state, ") to continue")
    assert output == "[Patients](http://x/patients) to continue"


def test_each_character_emitted_once_char_by_char():
    """Feeding one character at a time across many buffer trims loses and repeats nothing."""
    paragraph = (
        "To add a patient go to [Create Patient](https://clinic.example.com/patients/create.) "
        "then fill in the form. Existing records live in [Patients](https://clinic.example.com/patients).) "
        "For bookings use [Create Appointment](https://clinic.example.com/appointments/create)!). "
        "Plain prose with (parentheses) and [brackets] that are not links. "
    )
    full = paragraph * 12
    assert len(full) > 4 * BUFFER_LIMIT

    output, state = feed(list(full))

    assert output == repair_links(full)
    assert len(state.buffer) <= BUFFER_LIMIT + 1


def test_buffer_is_trimmed_to_limit():
    state = StreamState()
    for _ in range(30):
        state, _ = process_chunk(state, "x" * 100)
    assert len(state.buffer) == BUFFER_LIMIT
    assert state.emitted == BUFFER_LIMIT


def test_relay_streams_repaired_text():
    llm = FakeLLM(chunks=["See ", "[Patients](http://x/patients.", ")", " today."])
    relay = StreamRelay(llm, ERROR, request_id="req-1")

    chunks = collect(relay, PromptPair(system_prompt="sys", user_prompt="usr"))

    assert "".join(chunks) == "See [Patients](http://x/patients) today."
    assert relay.status == StreamStatus.COMPLETED
    assert llm.calls == [{"user_prompt": "usr", "system_prompt": "sys"}]


def test_relay_failure_writes_apology():
    """Held-back text is flushed before the fixed apology."""
    llm = FakeLLM(chunks=["Partial answer ", "[Pat"], error=RuntimeError("boom"))
    relay = StreamRelay(llm, ERROR)

    chunks = collect(relay, PromptPair(system_prompt="sys", user_prompt="usr"))

    assert "".join(chunks) == "Partial answer [Pat" + ERROR
    assert relay.status == StreamStatus.FAILED


def test_relay_cancelled_reraises():
    async def run():
        llm = FakeLLM(chunks=["one ", "two ", "three "])
        relay = StreamRelay(llm, ERROR)
        stream = relay.relay(PromptPair(system_prompt="s", user_prompt="u"))
        first = await stream.__anext__()
        await stream.aclose()
        return relay, first

    relay, first = asyncio.run(run())
    assert first == "one "
    assert relay.status == StreamStatus.CANCELLED
