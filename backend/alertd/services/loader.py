"""Definition loader - turns alert and target files into an immutable snapshot."""
import glob
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..models import (
    AlertDefinition,
    AlwaysSend,
    CommandSource,
    DefinitionError,
    EventSource,
    EventType,
    NumericalThreshold,
    QuerySource,
    SendSpec,
    Target,
    TargetRegistry,
    WhenChanged,
)
from ..schemas.alert_file import AlertFileSchema, AlwaysSendSchema, TargetsFileSchema, WhenChangedSchema
from ..utils.durations import parse_duration

logger = logging.getLogger(__name__)

YAML_EXTENSIONS = (".yml", ".yaml")
TARGETS_STEM = "_targets"


class LoadError(Exception):
    """The whole load failed; no snapshot could be produced."""


class InvalidDefinition(Exception):
    """A single file could not be turned into a definition."""

    def __init__(self, error: DefinitionError):
        super().__init__(error.message)
        self.error = error


@dataclass(frozen=True)
class ResolvedPaths:
    """Directories and files matched by the configured globs."""
    dirs: FrozenSet[str] = frozenset()
    files: FrozenSet[str] = frozenset()

    def all_paths(self) -> FrozenSet[str]:
        return self.dirs | self.files

    def differs_from(self, other: "ResolvedPaths") -> bool:
        return self.all_paths() != other.all_paths()


class GlobResolver:
    """Resolves glob patterns to the directories and files that exist right now."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns = list(patterns)

    def resolve(self) -> ResolvedPaths:
        dirs = set()
        files = set()
        for pattern in self.patterns:
            logger.debug(f"Resolving glob pattern {pattern}")
            for match in glob.glob(os.path.expanduser(pattern), recursive=True):
                path = os.path.abspath(match)
                if os.path.isdir(path):
                    dirs.add(path)
                elif os.path.isfile(path):
                    files.add(path)
        return ResolvedPaths(frozenset(dirs), frozenset(files))


@dataclass(frozen=True)
class DefinitionSnapshot:
    """Everything loaded by one run of the loader. Never mutated after publication."""
    alerts: Mapping[str, AlertDefinition] = field(default_factory=lambda: MappingProxyType({}))
    targets: TargetRegistry = field(default_factory=TargetRegistry)
    errors: Tuple[DefinitionError, ...] = ()
    resolved: ResolvedPaths = field(default_factory=ResolvedPaths)
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, path: str) -> Optional[AlertDefinition]:
        return self.alerts.get(path)

    def scheduled_alerts(self) -> List[AlertDefinition]:
        """Enabled alerts that run on a timer."""
        return [a for a in self.alerts.values() if a.enabled and a.is_polled]

    def event_alerts(self, event: EventType) -> List[AlertDefinition]:
        """Enabled alerts listening for an event type."""
        return [
            a for a in self.alerts.values()
            if a.enabled and isinstance(a.source, EventSource) and a.source.event == event
        ]

    def error_paths(self) -> FrozenSet[str]:
        return frozenset(e.path for e in self.errors)


def is_yaml_file(path: str) -> bool:
    return path.endswith(YAML_EXTENSIONS)


def is_targets_file(path: str) -> bool:
    return os.path.splitext(os.path.basename(path))[0] == TARGETS_STEM


def discover_files(resolved: ResolvedPaths) -> Tuple[List[str], List[str]]:
    """Find alert files and target files under the resolved paths.

    Returns:
        (alert_files, target_files), each sorted
    """
    found = set()
    for directory in resolved.dirs:
        for root, _dirs, names in os.walk(directory):
            for name in names:
                path = os.path.abspath(os.path.join(root, name))
                if is_yaml_file(path) and os.path.isfile(path):
                    found.add(path)
    for path in resolved.files:
        if is_yaml_file(path):
            found.add(path)

    target_files = sorted(p for p in found if is_targets_file(p))
    alert_files = sorted(p for p in found if not is_targets_file(p))
    return alert_files, target_files


def _read_yaml(content: str, path: str):
    try:
        return yaml.safe_load(content)
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        raise InvalidDefinition(DefinitionError(
            path=path,
            message=f"invalid YAML: {e.problem or e}",
            line=mark.line + 1 if mark else None,
            column=mark.column + 1 if mark else None,
        ))
    except yaml.YAMLError as e:
        raise InvalidDefinition(DefinitionError(path=path, message=f"invalid YAML: {e}"))


def _schema_error(path: str, error: ValidationError) -> InvalidDefinition:
    details = error.errors()
    first = details[0] if details else {}
    field_path = ".".join(str(part) for part in first.get("loc", ())) or None
    messages = []
    for detail in details:
        loc = ".".join(str(part) for part in detail.get("loc", ()))
        messages.append(f"{loc}: {detail['msg']}" if loc else detail["msg"])
    return InvalidDefinition(DefinitionError(
        path=path,
        message="; ".join(messages) or str(error),
        field_path=field_path,
    ))


def parse_targets(content: str, path: str) -> List[Target]:
    """Parse a ``_targets.yml`` file."""
    data = _read_yaml(content, path)
    if data is None:
        return []
    try:
        schema = TargetsFileSchema.model_validate(data)
    except ValidationError as e:
        raise _schema_error(path, e)
    return [Target(id=t.id, addresses=tuple(t.addresses), source_file=path) for t in schema.targets]


def parse_definition(
    content: str,
    path: str,
    default_interval: timedelta,
    registry: Optional[TargetRegistry] = None,
) -> AlertDefinition:
    """Parse and validate one alert file.

    Args:
        content: YAML text
        path: Absolute path, the alert's identity
        default_interval: Interval for files that do not set one
        registry: Targets to resolve ``send`` ids against; skipped if None

    Raises:
        InvalidDefinition: With the error location when known
    """
    data = _read_yaml(content, path)
    if data is None:
        raise InvalidDefinition(DefinitionError(path=path, message="definition is empty"))
    if not isinstance(data, dict):
        raise InvalidDefinition(DefinitionError(path=path, message="definition must be a mapping"))

    try:
        schema = AlertFileSchema.model_validate(data)
    except ValidationError as e:
        raise _schema_error(path, e)

    if schema.sql is not None:
        source = QuerySource(
            sql=schema.sql,
            numerical=tuple(
                NumericalThreshold(field=n.field, alert_at=n.alert_at, clear_at=n.clear_at)
                for n in schema.numerical
            ),
        )
    elif schema.event is not None:
        source = EventSource(event=EventType(schema.event))
    else:
        source = CommandSource(shell=schema.shell, run=schema.run)

    if isinstance(schema.always_send, AlwaysSendSchema):
        always_send = AlwaysSend.resend_after(parse_duration(schema.always_send.after))
    elif schema.always_send:
        always_send = AlwaysSend.always()
    else:
        always_send = AlwaysSend.off()

    if isinstance(schema.when_changed, WhenChangedSchema):
        when_changed = WhenChanged(
            enabled=True,
            except_fields=frozenset(schema.when_changed.except_),
            only_fields=frozenset(schema.when_changed.only),
        )
    else:
        when_changed = WhenChanged(enabled=bool(schema.when_changed))

    send = []
    for index, entry in enumerate(schema.send):
        if registry is not None and entry.id not in registry:
            raise InvalidDefinition(DefinitionError(
                path=path,
                message=f"unknown target '{entry.id}'",
                field_path=f"send.{index}.id",
            ))
        send.append(SendSpec(target_id=entry.id, body_template=entry.template, subject_template=entry.subject))

    return AlertDefinition(
        path=path,
        source=source,
        enabled=schema.enabled,
        interval=parse_duration(schema.interval) if schema.interval else default_interval,
        always_send=always_send,
        when_changed=when_changed,
        send=tuple(send),
    )


def _read_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def load_targets(target_files: Iterable[str]) -> Tuple[TargetRegistry, List[DefinitionError]]:
    """Merge target files in order. A colliding id is an error against the later file."""
    merged: Dict[str, Target] = {}
    errors: List[DefinitionError] = []
    for path in target_files:
        try:
            targets = parse_targets(_read_file(path), path)
        except InvalidDefinition as e:
            logger.error(f"Invalid targets file {path}: {e.error.message}")
            errors.append(e.error)
            continue
        except OSError as e:
            errors.append(DefinitionError(path=path, message=f"cannot read file: {e}"))
            continue

        for target in targets:
            existing = merged.get(target.id)
            if existing is not None:
                message = f"target '{target.id}' is already defined in {existing.source_file}"
                logger.error(f"Invalid targets file {path}: {message}")
                errors.append(DefinitionError(path=path, message=message, field_path="targets"))
                continue
            merged[target.id] = target

    if merged:
        logger.debug(f"Loaded {len(merged)} targets")
    return TargetRegistry(merged), errors


def load_snapshot(
    patterns: Iterable[str],
    default_interval: timedelta,
    resolved: Optional[ResolvedPaths] = None,
) -> DefinitionSnapshot:
    """Load every alert and target file matched by the globs.

    Files that fail to parse or validate are left out and reported in
    ``snapshot.errors``; they never fail the load as a whole.

    Raises:
        LoadError: If no glob patterns are configured
    """
    patterns = list(patterns)
    if not patterns:
        raise LoadError("no alert globs configured")

    if resolved is None:
        resolved = GlobResolver(patterns).resolve()
    if not resolved.all_paths():
        logger.warning(f"Alert globs matched nothing: {', '.join(patterns)}")

    alert_files, target_files = discover_files(resolved)
    registry, errors = load_targets(target_files)

    alerts: Dict[str, AlertDefinition] = {}
    for path in alert_files:
        try:
            alerts[path] = parse_definition(_read_file(path), path, default_interval, registry)
        except InvalidDefinition as e:
            logger.error(f"Invalid alert definition {path}: {e.error.message}")
            errors.append(e.error)
        except OSError as e:
            logger.error(f"Cannot read alert definition {path}: {e}")
            errors.append(DefinitionError(path=path, message=f"cannot read file: {e}"))

    logger.info(f"Loaded {len(alerts)} alerts, {len(registry)} targets, {len(errors)} errors")
    return DefinitionSnapshot(
        alerts=MappingProxyType(alerts),
        targets=registry,
        errors=tuple(errors),
        resolved=resolved,
    )
