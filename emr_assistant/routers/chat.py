"""
Chat endpoints: streamed answers and non-streaming quick help
"""
import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
import structlog

from emr_assistant.models.chat import ChatRequest, QuickHelpRequest, QuickHelpResponse
from emr_assistant.services.assistant import ChatAssistant
from emr_assistant.services.streaming import StreamRelay
from emr_assistant.utils.metrics import quick_help_counter

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])

QUICK_HELP_ERROR = "Unable to generate help content."


def get_base_url(req: Request) -> str:
    """Base for generated links: configured APP_BASE_URL, else the request's own"""
    settings = req.app.state.settings
    if settings.APP_BASE_URL:
        return settings.APP_BASE_URL.rstrip("/")
    return str(req.base_url).rstrip("/")


def get_assistant(req: Request) -> ChatAssistant:
    app = req.app
    return ChatAssistant(app.state.settings, app.state.knowledge_store)


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest, req: Request) -> StreamingResponse:
    """
    Answer a chat message as a plain-text stream
    """
    request_id = getattr(req.state, "request_id", "")
    settings = req.app.state.settings

    # Knowledge file read and search are blocking
    prompts = await asyncio.to_thread(get_assistant(req).build_chat_prompts, request, get_base_url(req))
    relay = StreamRelay(req.app.state.llm_service, settings.ERROR_MESSAGE, request_id=request_id)

    return StreamingResponse(
        relay.relay(prompts),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        }
    )


@router.post("/chat/quick-help", response_model=QuickHelpResponse, response_model_exclude_none=True)
async def quick_help(request: QuickHelpRequest, req: Request):
    """
    Short non-streaming help for a page
    """
    llm_service = req.app.state.llm_service

    try:
        prompts = await asyncio.to_thread(get_assistant(req).build_quick_help_prompts, request)
        points = await llm_service.generate_summary(None, prompts.user_prompt, prompts.system_prompt)
    except Exception as e:
        logger.error(
            "Quick help failed",
            action=request.action.value,
            url=request.url,
            error=str(e),
            error_class=type(e).__name__,
            exc_info=True
        )
        quick_help_counter.labels(action=request.action.value, status="error").inc()
        return JSONResponse(
            status_code=500,
            content=QuickHelpResponse(success=False, error=QUICK_HELP_ERROR).model_dump(exclude_none=True)
        )

    quick_help_counter.labels(action=request.action.value, status="success").inc()
    return QuickHelpResponse(success=True, content="\n".join(points))
