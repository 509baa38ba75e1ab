"""Liveness and version endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from api.settings import settings


router = APIRouter(tags=["Health"])


@router.get("/health")
def check_health():
    return {"status": "OK"}


@router.get("/version")
def get_version(request: Request):
    """Return the image tag and the scheduler state."""

    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "IMAGE_TAG": f"{settings.IMAGE_TAG}",
        "scheduler": scheduler.state.value if scheduler is not None else None,
    }
