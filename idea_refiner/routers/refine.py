import threading
import time
from typing import Optional, Tuple

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse

from idea_refiner.config import Settings, get_settings
from idea_refiner.schemas.refine import RefinementPlan, RefineRequest
from idea_refiner.services.dispatcher import Dispatcher
from idea_refiner.services.normalizer import normalize
from idea_refiner.services.render import render_markdown
from idea_refiner.utils.logger import get_logger

router = APIRouter()
logger = get_logger("refine")


_dispatcher_lock = threading.Lock()
_dispatcher: Optional[Tuple[Settings, Dispatcher]] = None


def get_dispatcher() -> Dispatcher:
    """One Dispatcher per Settings object, rebuilt when the settings change.

    A ConfigurationError is never cached, so a missing credential keeps
    failing every request until it is configured.
    """
    global _dispatcher
    settings = get_settings()
    with _dispatcher_lock:
        if _dispatcher is not None and _dispatcher[0] is settings:
            return _dispatcher[1]
        dispatcher = Dispatcher.from_settings(settings)
        stale, _dispatcher = _dispatcher, (settings, dispatcher)
    if stale is not None:
        stale[1].close()
    return dispatcher


def reset_dispatcher() -> None:
    global _dispatcher
    with _dispatcher_lock:
        stale, _dispatcher = _dispatcher, None
    if stale is not None:
        stale[1].close()


@router.post(
    "/api/refine",
    response_model=RefinementPlan,
    tags=["Refine"],
    responses={200: {"content": {"text/markdown": {}}}},
)
def post_refine(
    request: Request,
    payload: RefineRequest,
    format_: str = Query("json", alias="format", pattern=r"^(json|markdown)$", description="json|markdown"),
):
    req_id = getattr(request.state, "request_id", None)
    dispatcher = get_dispatcher()

    start = time.perf_counter()
    raw = dispatcher.generate(payload.idea)
    upstream_ms = int((time.perf_counter() - start) * 1000)

    plan = normalize(raw, request_id=req_id)
    logger.info(
        "idea refined",
        extra={
            "extra": {
                "event": "refined",
                "request_id": req_id,
                "provider": dispatcher.client.provider,
                "model": dispatcher.client.model,
                "prompt_version": dispatcher.prompt_version,
                "upstream_ms": upstream_ms,
            }
        },
    )

    if format_ == "markdown":
        return PlainTextResponse(render_markdown(plan), media_type="text/markdown")
    return plan
