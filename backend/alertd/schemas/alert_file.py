"""Schemas for alert and target definition files (YAML)."""
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.definition import EventType
from ..utils.durations import parse_duration


class NumericalThresholdSchema(BaseModel):
    """A numerical threshold on a query column."""
    field: str = Field(..., min_length=1)
    alert_at: float = Field(..., alias="alert-at")
    clear_at: Optional[float] = Field(None, alias="clear-at")

    class Config:
        populate_by_name = True
        extra = "forbid"


class AlwaysSendSchema(BaseModel):
    """Timed resend: ``always-send: {after: 1 hour}``."""
    after: str

    class Config:
        extra = "forbid"

    @field_validator("after")
    @classmethod
    def check_after(cls, value: str) -> str:
        parse_duration(value)
        return value


class WhenChangedSchema(BaseModel):
    """Change detection restricted to some fields."""
    except_: List[str] = Field(default_factory=list, alias="except")
    only: List[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        extra = "forbid"

    @model_validator(mode="after")
    def check_exclusive(self):
        if self.except_ and self.only:
            raise ValueError("'except' and 'only' are mutually exclusive")
        return self


class SendTargetSchema(BaseModel):
    """One entry of ``send``."""
    id: str = Field(..., min_length=1)
    subject: Optional[str] = None
    template: str
    # Older files say ``target: external``; the value is ignored
    target: Optional[str] = None

    class Config:
        extra = "forbid"


class AlertFileSchema(BaseModel):
    """An alert definition file."""
    enabled: bool = True
    interval: Optional[str] = None
    always_send: Union[bool, AlwaysSendSchema] = Field(False, alias="always-send")
    when_changed: Union[bool, WhenChangedSchema] = Field(False, alias="when-changed")
    sql: Optional[str] = None
    numerical: List[NumericalThresholdSchema] = Field(default_factory=list)
    shell: Optional[str] = None
    run: Optional[str] = None
    event: Optional[EventType] = None
    send: List[SendTargetSchema] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        extra = "forbid"

    @field_validator("interval")
    @classmethod
    def check_interval(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and parse_duration(value).total_seconds() <= 0:
            raise ValueError("interval must be positive")
        return value

    @model_validator(mode="after")
    def check_source(self):
        sources = [
            name for name, present in (
                ("sql", self.sql is not None),
                ("shell", self.shell is not None or self.run is not None),
                ("event", self.event is not None),
            ) if present
        ]
        if not sources:
            raise ValueError("one of 'sql', 'shell'+'run' or 'event' is required")
        if len(sources) > 1:
            raise ValueError(f"only one source is allowed, found: {', '.join(sources)}")
        if sources[0] == "shell" and (not self.shell or not self.run):
            raise ValueError("'shell' and 'run' must be given together")
        if self.numerical and self.sql is None:
            raise ValueError("'numerical' is only valid with 'sql'")
        return self


class TargetSchema(BaseModel):
    """A recipient group in a ``_targets.yml`` file."""
    id: str = Field(..., min_length=1)
    addresses: List[str] = Field(..., min_length=1)

    class Config:
        extra = "forbid"


class TargetsFileSchema(BaseModel):
    """A ``_targets.yml`` file."""
    targets: List[TargetSchema] = Field(default_factory=list)

    class Config:
        extra = "forbid"
