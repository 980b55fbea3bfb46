# RfpIngest/api/routers/system.py

from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter(tags=["System"])


@router.get("/health", summary="Service and mailbox listener status")
def health(request: Request) -> Dict[str, Any]:
    listener = getattr(request.app.state, "mailbox_listener", None)
    if listener is None:
        listener_state = {"status": "disabled", "lastError": None}
    else:
        listener_state = listener.snapshot()
    db_ready = getattr(request.app.state, "db", None) is not None
    return {"status": "ok" if db_ready else "degraded", "listener": listener_state}
