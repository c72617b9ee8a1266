"""Pydantic schemas for definition files and API request/response models."""
from .alert_file import (
    AlertFileSchema,
    AlwaysSendSchema,
    NumericalThresholdSchema,
    SendTargetSchema,
    TargetSchema,
    TargetsFileSchema,
    WhenChangedSchema,
)
from .control import (
    AlertIngestResponse,
    AlertRequest,
    AlertStateInfo,
    ErrorLocation,
    PauseAlertRequest,
    PauseAlertResponse,
    ReloadResponse,
    StatusResponse,
    TargetsResponse,
    ValidateRequest,
    ValidationInfo,
    ValidationResponse,
)

__all__ = [
    "AlertFileSchema",
    "AlwaysSendSchema",
    "NumericalThresholdSchema",
    "SendTargetSchema",
    "TargetSchema",
    "TargetsFileSchema",
    "WhenChangedSchema",
    "AlertIngestResponse",
    "AlertRequest",
    "AlertStateInfo",
    "ErrorLocation",
    "PauseAlertRequest",
    "PauseAlertResponse",
    "ReloadResponse",
    "StatusResponse",
    "TargetsResponse",
    "ValidateRequest",
    "ValidationInfo",
    "ValidationResponse",
]
