"""Prometheus scrape endpoint."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response

from backend.services.metrics.registry import CONTENT_TYPE


router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
def get_metrics(request: Request):
    metrics = getattr(request.app.state, "metrics", None)
    if metrics is None:
        raise HTTPException(status_code=404, detail="Metrics are disabled")
    return Response(content=metrics.render(), media_type=CONTENT_TYPE)
