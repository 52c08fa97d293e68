from __future__ import annotations

import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel

from windows_collect import RawEvent


EVENT_TYPE = "Windows Event Logs"


class MappedLogEntry(BaseModel):
    ProcessID: Optional[int] = None
    UserID: Optional[str] = None
    hostname: str
    event_type: str = EVENT_TYPE
    message: Optional[str] = None
    ComputerName: Optional[str] = None
    Channel: Optional[str] = None
    EventCategory: Optional[int] = None
    WinEventType: Optional[str] = None
    EventID: int
    SourceName: Optional[str] = None
    TimeGenerated: Optional[str] = None
    TimeWritten: str
    RecordNumber: Optional[int] = None


@dataclass(frozen=True)
class Exclusions:
    """None はフィルタなし。空文字のレベル名を除外する指定とは区別する。

    levels は指定されたままの表記を保持し（実行サマリに出す）、照合は大文字小文字を無視する。
    """

    levels: Optional[FrozenSet[str]] = None
    event_ids: Optional[FrozenSet[int]] = None
    _folded_levels: FrozenSet[str] = field(init=False, repr=False, compare=False, default=frozenset())

    def __post_init__(self):
        folded = frozenset(lv.casefold() for lv in self.levels) if self.levels else frozenset()
        object.__setattr__(self, "_folded_levels", folded)

    @classmethod
    def from_strings(
        cls,
        levels: Optional[Iterable[str]] = None,
        event_ids: Optional[Iterable[str]] = None,
    ) -> "Exclusions":
        level_set = frozenset(lv.strip() for lv in levels) if levels else None
        id_set = None
        if event_ids:
            try:
                id_set = frozenset(int(str(x).strip()) for x in event_ids)
            except ValueError as e:
                raise ValueError(f"event ids must be integers: {e}")
        return cls(levels=level_set or None, event_ids=id_set or None)

    def excludes_level(self, level_name: Optional[str]) -> bool:
        if not self.levels or level_name is None:
            return False
        return level_name.casefold() in self._folded_levels

    def level_list(self) -> List[str]:
        return sorted(self.levels) if self.levels else []

    def event_id_list(self) -> List[int]:
        return sorted(self.event_ids) if self.event_ids else []


def is_excluded(event: RawEvent, exclusions: Exclusions) -> bool:
    if exclusions.excludes_level(event.level_display_name):
        return True
    if exclusions.event_ids and event.event_id in exclusions.event_ids:
        return True
    return False


def map_event(event: RawEvent, *, hostname: str, now: datetime) -> MappedLogEntry:
    return MappedLogEntry(
        ProcessID=event.process_id,
        UserID=event.user_id,
        hostname=hostname.lower(),
        message=event.message,
        ComputerName=event.machine_name,
        Channel=event.log_name,
        EventCategory=event.level,
        WinEventType=event.level_display_name,
        EventID=event.event_id,
        SourceName=event.provider_name,
        TimeGenerated=event.time_created,
        TimeWritten=now.isoformat(),
        RecordNumber=event.record_id,
    )


def map_events(
    events: Iterable[RawEvent],
    exclusions: Exclusions,
    *,
    hostname: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> List[MappedLogEntry]:
    """除外条件に当たらないイベントを入力順のまま送信用の形に変換する。"""
    host = hostname or socket.gethostname()
    clock = clock or (lambda: datetime.now(timezone.utc))
    return [map_event(e, hostname=host, now=clock()) for e in events if not is_excluded(e, exclusions)]
