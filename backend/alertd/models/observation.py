"""Observations - the outcome of one evaluation of an alert's source."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Observation:
    """Result of evaluating a source.

    kind is one of ``query``, ``command``, ``event`` or ``source-error``.
    """
    kind: str
    rows: Tuple[Mapping[str, Any], ...] = ()
    stdout: str = ""
    exit_code: Optional[int] = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    observed_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def query(cls, rows, observed_at: Optional[datetime] = None) -> "Observation":
        return cls("query", rows=tuple(dict(row) for row in rows), observed_at=observed_at or _utcnow())

    @classmethod
    def command(cls, stdout: str, exit_code: int, observed_at: Optional[datetime] = None) -> "Observation":
        return cls("command", stdout=stdout, exit_code=exit_code, observed_at=observed_at or _utcnow())

    @classmethod
    def event(cls, payload: Mapping[str, Any], observed_at: Optional[datetime] = None) -> "Observation":
        return cls("event", payload=dict(payload), observed_at=observed_at or _utcnow())

    @classmethod
    def source_error(cls, message: str, observed_at: Optional[datetime] = None) -> "Observation":
        return cls("source-error", error=message, observed_at=observed_at or _utcnow())

    @property
    def failed(self) -> bool:
        return self.kind == "source-error"

    def records(self) -> List[Dict[str, Any]]:
        """The observation as a list of mappings, for field filtering."""
        if self.kind == "query":
            return [dict(row) for row in self.rows]
        if self.kind == "command":
            return [{"output": self.stdout, "exit_code": self.exit_code}]
        if self.kind == "event":
            return [dict(self.payload)]
        return [{"error_message": self.error}]

    def template_context(self) -> Dict[str, Any]:
        """Variables this observation contributes to notification templates."""
        if self.kind == "query":
            return {"rows": [dict(row) for row in self.rows]}
        if self.kind == "command":
            return {"output": self.stdout, "exit_code": self.exit_code}
        if self.kind == "event":
            return dict(self.payload)
        return {"error_message": self.error}
