"""Control API request/response schemas."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class StatusResponse(BaseModel):
    """Identifies a running daemon."""
    name: str = "alertd"
    version: str
    started_at: datetime
    pid: int


class AlertRequest(BaseModel):
    """Inbound HTTP event. Extra keys are passed to templates as-is."""
    message: str
    subject: Optional[str] = None

    class Config:
        extra = "allow"


class PauseAlertRequest(BaseModel):
    """Pause an alert until a deadline (ISO timestamp or relative duration)."""
    alert: str = Field(..., min_length=1)
    until: Optional[str] = None


class PauseAlertResponse(BaseModel):
    alert: str
    paused_until: datetime


class AlertStateInfo(BaseModel):
    """A loaded alert, with runtime state when detail is requested."""
    path: str
    enabled: bool
    source_type: str
    interval: Optional[str] = None
    always_send: Optional[str] = None
    when_changed: Optional[str] = None
    status: Optional[str] = None
    triggered_at: Optional[datetime] = None
    last_sent_at: Optional[datetime] = None
    paused_until: Optional[datetime] = None


class ValidateRequest(BaseModel):
    """Validate a definition by path, or by its content directly."""
    path: Optional[str] = None
    content: Optional[str] = None


class ErrorLocation(BaseModel):
    line: Optional[int] = None
    column: Optional[int] = None
    path: Optional[str] = None


class ValidationInfo(BaseModel):
    enabled: bool
    interval: Optional[str] = None
    source_type: str
    targets: int


class ValidationResponse(BaseModel):
    """Outcome of validating a single definition."""
    valid: bool
    error: Optional[str] = None
    error_location: Optional[ErrorLocation] = None
    info: Optional[ValidationInfo] = None


class ReloadResponse(BaseModel):
    status: str = "reload requested"


class TargetsResponse(BaseModel):
    targets: Dict[str, List[str]]


class AlertIngestResponse(BaseModel):
    """How many event alerts an ingested event reached."""
    alerts: int
    notified: int
