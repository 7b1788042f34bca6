"""
In-memory stores for loaded execution data.

ExecutionDataStore keeps one ExecutionData record per class id and merges
records for the same id by OR-ing their probes, so loading a file twice
never changes the result. SessionInfoStore keeps session records in the
order they were loaded.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..errors import IncompatibleExecDataError


@dataclass
class SessionInfo:
    """Metadata of one recorded session (timestamps in ms since the epoch)."""
    id: str
    start_timestamp: int
    dump_timestamp: int

    @property
    def start_time(self) -> datetime:
        return datetime.fromtimestamp(self.start_timestamp / 1000.0, tz=timezone.utc)

    @property
    def dump_time(self) -> datetime:
        return datetime.fromtimestamp(self.dump_timestamp / 1000.0, tz=timezone.utc)


@dataclass
class ExecutionData:
    """Probe array recorded for one class, identified by its CRC64 id."""
    id: int
    name: str
    probes: list[bool] = field(default_factory=list)

    @property
    def has_hits(self) -> bool:
        return any(self.probes)

    def assert_compatibility(self, id: int, name: str, probe_count: int) -> None:
        if self.id != id:
            raise IncompatibleExecDataError(
                f"Different ids ({self.id:016x} and {id:016x})."
            )
        if self.name != name:
            raise IncompatibleExecDataError(
                f"Different class names {self.name} and {name} for id {id:016x}."
            )
        if len(self.probes) != probe_count:
            raise IncompatibleExecDataError(
                f"Incompatible execution data for class {name} with id {id:016x}."
            )

    def merge(self, other: "ExecutionData") -> None:
        """Mark every probe executed in other as executed here as well."""
        self.assert_compatibility(other.id, other.name, len(other.probes))
        self.probes = [a or b for a, b in zip(self.probes, other.probes)]


class ExecutionDataStore:
    """Execution data of all loaded files, keyed by class id."""

    def __init__(self):
        self._entries: dict[int, ExecutionData] = {}
        self._names: set[str] = set()

    def put(self, data: ExecutionData) -> None:
        entry = self._entries.get(data.id)
        if entry is None:
            self._entries[data.id] = ExecutionData(data.id, data.name, list(data.probes))
            self._names.add(data.name)
        else:
            entry.merge(data)

    # Lets the store be handed to a reader directly as its execution visitor
    visit_class_execution = put

    def get(self, id: int) -> Optional[ExecutionData]:
        return self._entries.get(id)

    def contains(self, name: str) -> bool:
        """True if data for a class with this name was loaded (any id)."""
        return name in self._names

    @property
    def contents(self) -> list[ExecutionData]:
        return sorted(self._entries.values(), key=lambda d: (d.name, d.id))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, id: int) -> bool:
        return id in self._entries


class SessionInfoStore:
    """Session records in load order."""

    def __init__(self):
        self._infos: list[SessionInfo] = []

    def visit_session_info(self, info: SessionInfo) -> None:
        self._infos.append(info)

    @property
    def infos(self) -> list[SessionInfo]:
        return list(self._infos)

    def __len__(self) -> int:
        return len(self._infos)
