"""
Streaming relay between the model and the HTTP response.

Models regularly get markdown link punctuation wrong: ``[Text](url.)`` or
``[Text](url).)``. Every chunk is appended to a rolling buffer and the whole
buffer is repaired, so a link split across chunks is still fixed.

Text that a later chunk could still rewrite (an unfinished link, or a link
followed by punctuation at the very end of the buffer) is held back until it
settles. Everything before it is emitted exactly once. ``process_chunk`` is
pure, so the accounting can be tested without a network stream.
"""
import asyncio
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Protocol, Tuple

import structlog

from emr_assistant.models.chat import PromptPair
from emr_assistant.utils.metrics import first_chunk_latency, link_repair_counter, track_stream_outcome

logger = structlog.get_logger()

BUFFER_LIMIT = 1000
MAX_PENDING = 600
LINK_PUNCTUATION = ").,;:!?"

# [text](url.) -> punctuation inside the parentheses
PUNCT_INSIDE_URL = re.compile(r"\[([^\]\n]{1,200})\]\(([^)\s]{1,300}?)[.,;:!?]+\)")
# [text](url).) -> stray closing parens anywhere in the punctuation run
PUNCT_AFTER_LINK = re.compile(r"\[([^\]\n]{1,200})\]\(([^)\s]{1,300})\)([).,;:!?]+)")
# A link that the next chunk might still change, anchored at the buffer end.
# Length bounds must stay in step with the two patterns above.
PENDING_LINK = re.compile(r"\[[^\]\n]{0,200}(?:\](?:\([^)\s]{0,300}(?:\)[).,;:!?]*)?)?)?$")


def repair_links(text: str) -> str:
    """Move punctuation out of markdown link URLs and drop stray closing parens"""
    text = PUNCT_INSIDE_URL.sub(lambda m: f"[{m.group(1)}]({m.group(2)})", text)

    def _after(m: re.Match) -> str:
        url = m.group(2).rstrip(LINK_PUNCTUATION)
        trailing = m.group(3).replace(")", "")
        return f"[{m.group(1)}]({url}){trailing}"

    return PUNCT_AFTER_LINK.sub(_after, text)


def settled_length(text: str) -> int:
    """Length of the prefix of ``text`` that no future chunk can rewrite"""
    match = PENDING_LINK.search(text)
    if match is None or len(text) - match.start() > MAX_PENDING:
        return len(text)
    return match.start()


@dataclass(frozen=True)
class StreamState:
    """
    ``buffer`` is the repaired tail of the answer (at most BUFFER_LIMIT chars
    once emitted text is trimmed); ``emitted`` is how much of it was sent.
    """
    buffer: str = ""
    emitted: int = 0
    chunks: int = 0


def process_chunk(state: StreamState, chunk: str) -> Tuple[StreamState, str]:
    """Fold one model chunk into the state, return the new state and the text to send"""
    raw = state.buffer + chunk
    cleaned = repair_links(raw)
    if cleaned != raw:
        link_repair_counter.inc()

    settled = settled_length(cleaned)
    output = cleaned[state.emitted:settled] if settled > state.emitted else ""
    emitted = max(state.emitted, settled)

    # Only already-emitted text may be trimmed away
    if len(cleaned) > BUFFER_LIMIT:
        drop = min(len(cleaned) - BUFFER_LIMIT, emitted)
        cleaned = cleaned[drop:]
        emitted -= drop

    return StreamState(buffer=cleaned, emitted=emitted, chunks=state.chunks + 1), output


def flush(state: StreamState) -> Tuple[StreamState, str]:
    """Release whatever is still held back at the end of the stream"""
    output = state.buffer[state.emitted:]
    return StreamState(buffer=state.buffer, emitted=len(state.buffer), chunks=state.chunks), output


class TextStreamer(Protocol):
    def stream_response(self, user_prompt: str, system_prompt: str) -> AsyncIterator[str]:
        ...


class StreamStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StreamRelay:
    """Forwards one prompt pair to the model and yields repaired text"""

    def __init__(self, llm: TextStreamer, error_message: str, request_id: str = ""):
        self.llm = llm
        self.error_message = error_message
        self.request_id = request_id
        self.status = StreamStatus.IDLE
        self.state = StreamState()

    async def relay(self, prompts: PromptPair) -> AsyncIterator[str]:
        self.status = StreamStatus.STREAMING
        start_time = time.time()
        first_chunk_time: Optional[float] = None

        try:
            async for chunk in self.llm.stream_response(prompts.user_prompt, prompts.system_prompt):
                if first_chunk_time is None:
                    first_chunk_time = time.time()
                    first_chunk_latency.observe(first_chunk_time - start_time)

                self.state, output = process_chunk(self.state, chunk)
                if output:
                    yield output

            self.state, output = flush(self.state)
            if output:
                yield output
            self.status = StreamStatus.COMPLETED

        except (asyncio.CancelledError, GeneratorExit):
            # Client went away; nothing more can be written
            self.status = StreamStatus.CANCELLED
            logger.warning("Chat stream cancelled", request_id=self.request_id)
            raise

        except Exception as e:
            self.status = StreamStatus.FAILED
            logger.error(
                "Chat stream failed",
                request_id=self.request_id,
                error=str(e),
                error_class=type(e).__name__,
                exc_info=True
            )
            self.state, output = flush(self.state)
            yield output + self.error_message

        finally:
            track_stream_outcome(self.status.value, self.state.chunks, self.request_id)
