"""Internal events: synthetic identities, contexts and fallback templates."""
from typing import Any, Dict, Mapping, Optional, Tuple

from ..models import AlertDefinition, EventSource, EventType, SendSpec, Target

SOURCE_ERROR_SUFFIX = "#source-error"
DEFINITION_ERROR_SUFFIX = "#definition-error"

# Subject and body used when no alert listens for an event
FALLBACK_TEMPLATES: Dict[EventType, Tuple[str, str]] = {
    EventType.SOURCE_ERROR: (
        "[alertd] {{ hostname }}: Failed alert: {{ alert_file }}",
        "<pre>{{ error_message }}</pre>",
    ),
    EventType.DEFINITION_ERROR: (
        "[alertd] {{ hostname }}: Invalid alert definition: {{ alert_file }}",
        "<pre>{{ error_message }}</pre>",
    ),
    EventType.HTTP: (
        "[alertd] {{ hostname }}: {{ subject }}",
        "{{ message }}",
    ),
}

DEFAULT_HTTP_SUBJECT = "Custom alert"


def source_error_key(path: str) -> str:
    return f"{path}{SOURCE_ERROR_SUFFIX}"


def definition_error_key(path: str) -> str:
    return f"{path}{DEFINITION_ERROR_SUFFIX}"


def internal_key(event: EventType) -> str:
    return f"[internal:{event.value}]"


def is_internal_key(key: str) -> bool:
    return key.startswith("[internal:")


def error_context(alert_file: str, error_message: str) -> Dict[str, Any]:
    return {"alert_file": alert_file, "error_message": error_message}


def http_context(message: str, subject: Optional[str] = None, extra: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Template variables for an HTTP event; extra keys come first so they cannot mask message/subject."""
    context = dict(extra or {})
    context["message"] = message
    context["subject"] = subject or DEFAULT_HTTP_SUBJECT
    return context


def fallback_definition(event: EventType, target: Target) -> AlertDefinition:
    """Synthetic alert sending an event to the default target with built-in templates."""
    subject, body = FALLBACK_TEMPLATES[event]
    return AlertDefinition(
        path=internal_key(event),
        source=EventSource(event=event),
        send=(SendSpec(target_id=target.id, body_template=body, subject_template=subject),),
    )
