"""Validation of a single definition against the current target registry."""
import logging
import os
from datetime import timedelta
from typing import Optional

from jinja2 import TemplateSyntaxError

from ..models import TargetRegistry, source_type
from ..schemas.control import ErrorLocation, ValidationInfo, ValidationResponse
from ..utils.durations import format_duration
from .loader import InvalidDefinition, parse_definition
from .templates import check_syntax

logger = logging.getLogger(__name__)


def validate_definition(
    content: str,
    path: str,
    registry: TargetRegistry,
    default_interval: timedelta,
) -> ValidationResponse:
    """Check that a definition would load, without adding it to the active set."""
    try:
        definition = parse_definition(content, path, default_interval, registry)
    except InvalidDefinition as e:
        error = e.error
        return ValidationResponse(
            valid=False,
            error=error.message,
            error_location=ErrorLocation(line=error.line, column=error.column, path=error.field_path),
        )

    for index, spec in enumerate(definition.send):
        for field_name, template in (("subject", spec.subject_template), ("template", spec.body_template)):
            if template is None:
                continue
            try:
                check_syntax(template)
            except TemplateSyntaxError as e:
                return ValidationResponse(
                    valid=False,
                    error=f"template error: {e.message}",
                    error_location=ErrorLocation(line=e.lineno, path=f"send.{index}.{field_name}"),
                )

    return ValidationResponse(
        valid=True,
        info=ValidationInfo(
            enabled=definition.enabled,
            interval=format_duration(definition.interval) if definition.is_polled else None,
            source_type=source_type(definition.source),
            targets=len(definition.send),
        ),
    )


def validate_file(
    path: Optional[str],
    content: Optional[str],
    registry: TargetRegistry,
    default_interval: timedelta,
) -> ValidationResponse:
    """Validate by file path, or by content when given.

    Raises:
        ValueError: If neither a path nor content is given
    """
    if content is None:
        if not path:
            raise ValueError("either 'path' or 'content' is required")
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            return ValidationResponse(valid=False, error=f"cannot read {path}: {e}")

    identity = os.path.abspath(path) if path else "<content>"
    result = validate_definition(content, identity, registry, default_interval)
    logger.info(f"Validated {identity}: {'valid' if result.valid else result.error}")
    return result
