from __future__ import annotations

from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check, exempt from admission control.

    Returns:
        dict: ``status`` is always "ok"; ``admission`` reports whether the
            gate is enforcing.
    """

    return {
        "status": "ok",
        "admission": "enabled" if settings.admission.enabled else "disabled",
    }
