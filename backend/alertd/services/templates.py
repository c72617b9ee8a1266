"""Notification template rendering (Jinja2)."""
import os
import socket
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from jinja2 import Environment, StrictUndefined

from ..models import AlertDefinition
from ..utils.durations import format_duration

DEFAULT_SUBJECT = "[alertd] {{ filename }} ({{ hostname }})"

# No autoescape: bodies are Markdown and may embed raw HTML
environment = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)


def get_hostname() -> str:
    return socket.gethostname()


def build_context(
    definition: AlertDefinition,
    now: datetime,
    hostname: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Standard template variables for an alert, plus observation variables."""
    context: Dict[str, Any] = {
        "path": definition.path,
        "filename": os.path.basename(definition.path),
        "hostname": hostname or get_hostname(),
        "now": now.isoformat(),
        "interval": format_duration(definition.interval),
        "triggered": False,
        "cleared": False,
    }
    if extra:
        context.update(extra)
    return context


def render(source: str, context: Mapping[str, Any]) -> str:
    """Render a template string.

    Raises:
        jinja2.TemplateError: On syntax errors or undefined variables
    """
    return environment.from_string(source).render(**context)


def check_syntax(source: str) -> None:
    """Parse a template without rendering it.

    Raises:
        jinja2.TemplateSyntaxError: If the template does not parse
    """
    environment.parse(source)
