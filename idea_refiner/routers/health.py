from datetime import datetime, timezone

from fastapi import APIRouter, Header, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from idea_refiner.config import get_settings
from idea_refiner.utils.metrics import registry

router = APIRouter()


@router.get("/health", tags=["Ops"])
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get(
    "/metrics",
    tags=["Ops"],
    response_class=Response,
    responses={200: {"content": {"text/plain": {}}}},
)
def metrics(
    x_metrics_token: str | None = Header(default=None, alias="X-Metrics-Token")
):
    # If a token is configured, enforce it; otherwise allow open access
    token = get_settings().metrics_token
    if token and x_metrics_token != token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
