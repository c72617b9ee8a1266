"""Targets - named groups of recipient addresses."""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Target:
    """A recipient group referenced by alerts through its id."""
    id: str
    addresses: Tuple[str, ...]
    source_file: Optional[str] = None


class TargetRegistry:
    """Merged, read-only view of every loaded target file."""

    def __init__(self, targets: Optional[Mapping[str, Target]] = None):
        self._targets: Mapping[str, Target] = MappingProxyType(dict(targets or {}))

    def get(self, target_id: str) -> Optional[Target]:
        return self._targets.get(target_id)

    def __contains__(self, target_id: str) -> bool:
        return target_id in self._targets

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    def ids(self):
        return sorted(self._targets)

    def default_target(self) -> Optional[Target]:
        """Target used for events nobody has defined an alert for.

        The only target if there is one, else the one called ``default``,
        else the alphabetically first.
        """
        if not self._targets:
            return None
        if len(self._targets) == 1:
            return next(iter(self._targets.values()))
        if "default" in self._targets:
            return self._targets["default"]
        return self._targets[sorted(self._targets)[0]]

    def as_dict(self) -> Dict[str, list]:
        return {target.id: list(target.addresses) for target in self}
