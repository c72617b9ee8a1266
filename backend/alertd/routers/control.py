"""Control API - reload, alert listing, pause, validation and event ingestion."""
import logging
import os
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST

from .. import __version__
from ..metrics import get_metrics
from ..models import source_type
from ..schemas.control import (
    AlertIngestResponse,
    AlertRequest,
    AlertStateInfo,
    PauseAlertRequest,
    PauseAlertResponse,
    ReloadResponse,
    StatusResponse,
    TargetsResponse,
    ValidateRequest,
    ValidationResponse,
)
from ..services.validation import validate_file
from ..utils.durations import format_duration, parse_deadline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["control"])


def get_daemon(request: Request):
    """Dependency returning the daemon the app was created for."""
    return request.app.state.daemon


@router.get("/status", response_model=StatusResponse)
async def get_status(daemon=Depends(get_daemon)):
    """Identify this daemon."""
    return StatusResponse(version=__version__, started_at=daemon.started_at, pid=os.getpid())


@router.get("/metrics")
async def get_prometheus_metrics():
    """Prometheus metrics."""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@router.post("/reload", response_model=ReloadResponse, status_code=202)
async def reload_definitions(daemon=Depends(get_daemon)):
    """Request a reload of every definition."""
    logger.info("Reload requested over HTTP")
    daemon.reload()
    return ReloadResponse()


@router.get("/alerts", response_model=List[AlertStateInfo], response_model_exclude_none=True)
async def list_alerts(detail: bool = Query(False), daemon=Depends(get_daemon)):
    """List loaded alerts, with runtime state if ``detail`` is set."""
    snapshot = daemon.runtime.snapshot
    store = daemon.runtime.store
    alerts = []
    for path in sorted(snapshot.alerts):
        definition = snapshot.alerts[path]
        info = AlertStateInfo(path=path, enabled=definition.enabled, source_type=source_type(definition.source))
        if detail:
            state = store.get(path)
            info.interval = format_duration(definition.interval) if definition.is_polled else None
            info.always_send = definition.always_send.describe()
            info.when_changed = definition.when_changed.describe()
            info.status = "PAUSED" if state.is_paused(daemon.now()) else state.status
            info.triggered_at = state.triggered_at
            info.last_sent_at = state.last_sent_at
            info.paused_until = state.paused_until
        alerts.append(info)
    return alerts


@router.delete("/alerts", response_model=PauseAlertResponse)
async def pause_alert(request: PauseAlertRequest, daemon=Depends(get_daemon)):
    """Pause an alert until a deadline (one week by default)."""
    snapshot = daemon.runtime.snapshot
    path = request.alert
    if path not in snapshot.alerts:
        path = os.path.abspath(request.alert)
    if path not in snapshot.alerts:
        raise HTTPException(status_code=404, detail=f"Alert not found: {request.alert}")

    try:
        until = parse_deadline(request.until, now=daemon.now())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid deadline: {e}")

    await daemon.runtime.store.pause(path, until)
    return PauseAlertResponse(alert=path, paused_until=until)


@router.get("/targets", response_model=TargetsResponse)
async def list_targets(daemon=Depends(get_daemon)):
    """The merged target registry."""
    return TargetsResponse(targets=daemon.runtime.snapshot.targets.as_dict())


@router.post("/validate", response_model=ValidationResponse, response_model_exclude_none=True)
def validate(request: ValidateRequest, daemon=Depends(get_daemon)):
    """Validate a definition against the current targets without loading it.

    Runs in the threadpool since it may read the file from disk.
    """
    try:
        return validate_file(
            request.path,
            request.content,
            daemon.runtime.snapshot.targets,
            daemon.default_interval,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/alert", response_model=AlertIngestResponse)
async def ingest_alert(request: AlertRequest, daemon=Depends(get_daemon)):
    """Ingest an HTTP event and route it through the http event alerts."""
    result = await daemon.alerter.ingest_event(request.message, request.subject, request.model_extra or {})
    return AlertIngestResponse(alerts=result.alerts, notified=result.notified)
