from __future__ import annotations

import logging
from typing import Any

import requests

from carousel.config import settings
from carousel.errors import EngineApiError, UpstreamDispatchError

logger = logging.getLogger("carousel.engine")


def _webhook_url(name: str) -> str:
    return f"{settings.engine_webhook_url.rstrip('/')}/{name}"


def _post_webhook(name: str, payload: dict[str, Any], timeout: int) -> requests.Response:
    try:
        response = requests.post(_webhook_url(name), json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamDispatchError(f"{name} webhook unreachable: {exc}") from exc
    if not response.ok:
        raise UpstreamDispatchError(f"{name} webhook failed ({response.status_code}): {response.text[:500]}")
    return response


def start_carousel_job(payload: dict[str, Any]) -> dict[str, Any]:
    """Start the image workflow and return its acknowledgment.

    The acknowledgment may already carry ``results.slides`` when the workflow
    answers after its last node; otherwise results arrive by callback.
    """
    response = _post_webhook("carousel-generate", payload, settings.primary_webhook_timeout_seconds)
    try:
        ack = response.json()
    except ValueError as exc:
        raise UpstreamDispatchError(f"carousel-generate returned a non-JSON acknowledgment: {response.text[:200]}") from exc
    if not isinstance(ack, dict):
        raise UpstreamDispatchError("carousel-generate returned an unexpected acknowledgment")
    return ack


def start_video_job(payload: dict[str, Any]) -> dict[str, Any]:
    """Start the video workflow. It answers on receipt, sometimes with a bare string."""
    response = _post_webhook("carousel-video-generate", payload, settings.engine_request_timeout_seconds)
    try:
        ack = response.json()
    except ValueError:
        logger.info("video webhook acknowledged: %s", response.text[:200])
        return {"success": True, "generationId": payload.get("generationId"), "message": "Video generation started"}
    if not isinstance(ack, dict):
        return {"success": True, "generationId": payload.get("generationId"), "message": str(ack)}
    return ack


def list_executions(workflow_id: str, limit: int) -> list[dict[str, Any]]:
    """Most recent executions of a workflow, including their run data."""
    if not settings.engine_api_key:
        raise EngineApiError("ENGINE_API_KEY not configured, cannot poll executions")
    try:
        response = requests.get(
            f"{settings.engine_api_url.rstrip('/')}/executions",
            params={"workflowId": workflow_id, "limit": limit, "includeData": "true"},
            headers={"X-N8N-API-KEY": settings.engine_api_key, "Accept": "application/json"},
            timeout=settings.engine_request_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise EngineApiError(f"Execution listing unreachable: {exc}") from exc
    if not response.ok:
        raise EngineApiError(f"Execution listing failed ({response.status_code}): {response.text[:300]}")
    try:
        body = response.json()
    except ValueError as exc:
        raise EngineApiError("Execution listing returned non-JSON") from exc
    rows = body.get("data") if isinstance(body, dict) else None
    return [row for row in (rows or []) if isinstance(row, dict)]


def fetch_engine_status(generation_id: str) -> dict[str, Any]:
    """Status as known by the engine, used when nothing is stored locally."""
    try:
        response = requests.get(_webhook_url(f"carousel-status/{generation_id}"), timeout=settings.engine_request_timeout_seconds)
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise EngineApiError(f"Engine status lookup failed for {generation_id}: {exc}") from exc
    if not isinstance(body, dict):
        raise EngineApiError(f"Engine status lookup returned an unexpected body for {generation_id}")
    return body
