from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from solana_exporter.metrics import format_prometheus

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus text exposition."""
    return Response(content=format_prometheus(), media_type="text/plain; version=0.0.4")


@router.get("/health")
def health(request: Request) -> Any:
    loop = getattr(request.app.state, "loop", None)
    cache = getattr(request.app.state, "cache", None)

    body: dict[str, Any] = {"ok": True}
    if loop is not None:
        status = loop.status()
        body["loop"] = status
        body["ok"] = not status["unhealthy"]
    if cache is not None:
        epochs = cache.cached_reward_epochs()
        body["cached_reward_epochs"] = len(epochs)
        body["last_rewards_epoch"] = epochs[-1] if epochs else None

    if not body["ok"]:
        return JSONResponse(status_code=503, content=body)
    return body
