from __future__ import annotations

import base64
import json
import logging
import platform
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from errors import EventQueryError


logger = logging.getLogger(__name__)

# PowerShell の単一引用符や特殊文字でコマンドが壊れたり注入にならないよう、ログ名を制限する。
# 例: Microsoft-Windows-Windows Defender/Operational
_LOG_NAME_RE = re.compile(r"[A-Za-z0-9 _\-\/().]+")


def is_windows() -> bool:
    return platform.system().lower() == "windows"


def _safe_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class RawEvent:
    process_id: Optional[int]
    user_id: Optional[str]
    message: Optional[str]
    machine_name: Optional[str]
    log_name: Optional[str]
    level: Optional[int]
    level_display_name: Optional[str]
    event_id: int
    provider_name: Optional[str]
    time_created: Optional[str]
    record_id: Optional[int]

    @classmethod
    def from_powershell(cls, item: Dict[str, Any]) -> "RawEvent":
        """Select-Object で整形した Get-WinEvent の 1 件から組み立てる。"""
        return cls(
            process_id=_safe_int(item.get("ProcessId"), None),
            user_id=item.get("UserId"),
            message=item.get("Message"),
            machine_name=item.get("MachineName"),
            log_name=item.get("LogName"),
            level=_safe_int(item.get("Level"), None),
            level_display_name=item.get("LevelDisplayName"),
            event_id=_safe_int(item.get("Id"), 0),
            provider_name=item.get("ProviderName"),
            time_created=item.get("TimeCreated"),
            record_id=_safe_int(item.get("RecordId"), None),
        )


def _run_powershell_base64_json(command: str, timeout_s: int) -> Any:
    """PowerShell を実行して Base64(JSON) を受け取る。

    Windows PowerShell の出力エンコーディング差異や、メッセージ本文に含まれる文字が原因で
    JSON が壊れるケースがあるため、PowerShell 側で UTF-8 の Base64 にしてから受け取る。
    失敗はすべて EventQueryError として送出する。
    """
    try:
        result = subprocess.run(
            ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", command],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="ignore",
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired:
        raise EventQueryError(f"powershell timed out after {timeout_s}s")
    except OSError as e:
        raise EventQueryError(f"powershell execution failed: {e}")

    if result.returncode != 0:
        err = (result.stderr or "").strip() or (result.stdout or "").strip()
        raise EventQueryError(f"powershell returned {result.returncode}: {err}")

    raw = (result.stdout or "").strip()
    if not raw:
        return []

    try:
        data = base64.b64decode(raw.encode("ascii"), validate=False)
        return json.loads(data.decode("utf-8", errors="strict"))
    except (ValueError, UnicodeError) as e:
        raise EventQueryError(f"failed to decode base64 json: {e}")


def _as_list(data: Any) -> List[Dict[str, Any]]:
    # 0件/1件/複数件を配列に統一
    if isinstance(data, list):
        return [e for e in data if isinstance(e, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def build_eventlog_query(log_name: str, since: datetime) -> str:
    since_ms = int(since.timestamp() * 1000)
    return (
        "$ErrorActionPreference = 'Stop'; "
        f"$since = [DateTimeOffset]::FromUnixTimeMilliseconds({since_ms}).LocalDateTime; "
        # 0件は NoMatchingEventsFound として例外になるので空配列に、それ以外はエラー終了
        "try { "
        f"  $events = Get-WinEvent -FilterHashtable @{{LogName='{log_name}'; StartTime=$since}} -ErrorAction Stop; "
        "} catch { "
        "  if ($_.FullyQualifiedErrorId -like 'NoMatchingEventsFound*') { $events = @() } "
        "  else { [Console]::Error.WriteLine($_.Exception.Message); exit 1 } "
        "}; "
        "$items = @($events) | Select-Object ProcessId, "
        "@{n='UserId';e={ if ($_.UserId) { $_.UserId.Value } else { $null } }}, "
        "Message, MachineName, LogName, Level, LevelDisplayName, Id, ProviderName, "
        "@{n='TimeCreated';e={ $_.TimeCreated.ToUniversalTime().ToString('o') }}, RecordId; "
        "$json = ConvertTo-Json -InputObject @($items) -Depth 4 -Compress; "
        "if (-not $json) { $json = '[]' }; "
        "[System.Convert]::ToBase64String([System.Text.Encoding]::UTF8.GetBytes($json))"
    )


def collect_eventlog(log_name: str, since: datetime, *, timeout_s: int = 300) -> List[RawEvent]:
    """`log_name` のうち作成時刻が `since` 以降のイベントをすべて返す。

    順序は Get-WinEvent の返す順（通常は新しい順）のまま。件数の上限は設けない。
    """
    if not is_windows():
        raise EventQueryError("Not running on Windows")

    log_name = (log_name or "").strip()
    if not log_name or not _LOG_NAME_RE.fullmatch(log_name):
        raise EventQueryError(
            f"Invalid log_name {log_name!r}. Allowed chars: letters, numbers, space, _-/.()"
        )

    data = _run_powershell_base64_json(build_eventlog_query(log_name, since), timeout_s)
    events = [RawEvent.from_powershell(e) for e in _as_list(data)]
    logger.info("fetched %d events from %s since %s", len(events), log_name, since.isoformat())
    return events


def collect_eventlog_log_list(*, limit: int = 200, timeout_s: int = 30) -> List[Dict[str, Any]]:
    """利用可能なイベントログの一覧を返す（イベントビューアの「ログ」一覧相当）。"""
    if not is_windows():
        raise EventQueryError("Not running on Windows")

    limit_i = max(1, min(2000, _safe_int(limit, 200)))
    timeout_i = max(5, min(120, _safe_int(timeout_s, 30)))

    # ログ数が多い環境があるため、先頭 limit 件のみ返す
    ps = (
        f"$logs = Get-WinEvent -ListLog * -ErrorAction SilentlyContinue | Sort-Object LogName | Select-Object -First {limit_i} "
        "| Select-Object LogName, LogType, IsEnabled, RecordCount; "
        "$json = ConvertTo-Json -InputObject @($logs) -Depth 4 -Compress; "
        "[System.Convert]::ToBase64String([System.Text.Encoding]::UTF8.GetBytes($json))"
    )
    return _as_list(_run_powershell_base64_json(ps, timeout_i))
