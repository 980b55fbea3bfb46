from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status


def get_dependency_or_503(request: Request, name: str) -> Any:
    """Return ``request.app.state.<name>`` or fail with 503 when it is missing."""

    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not available",
        )
    return value
