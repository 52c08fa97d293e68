from __future__ import annotations

import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, TextIO

from pydantic import BaseModel, Field

from event_mapper import Exclusions


INTEGRATION_NAME = "com.newrelic.winevent-forwarder"
INTEGRATION_VERSION = "0.2.1"
PROTOCOL_VERSION = 1
APP_VERSION = "2.2"
SUMMARY_EVENT_TYPE = "WinEventLogForwarderSample"


class RunSummary(BaseModel):
    event_type: str = SUMMARY_EVENT_TYPE
    appVersion: str = APP_VERSION
    excludedEvents: List[int] = Field(default_factory=list)
    excludedLevels: List[str] = Field(default_factory=list)
    hostTime: str
    pullAfter: str
    logName: str
    eventCount: int
    nrLogsResponse: Optional[int] = None


class IntegrationPayload(BaseModel):
    name: str = INTEGRATION_NAME
    integration_version: str = INTEGRATION_VERSION
    protocol_version: int = PROTOCOL_VERSION
    metrics: List[RunSummary]
    inventory: Dict[str, Any] = Field(default_factory=dict)
    events: List[Dict[str, Any]] = Field(default_factory=list)


def build_run_summary(
    *,
    log_name: str,
    exclusions: Exclusions,
    pull_after: datetime,
    host_time: datetime,
    event_count: int,
    response_status: Optional[int],
) -> IntegrationPayload:
    summary = RunSummary(
        excludedEvents=exclusions.event_id_list(),
        excludedLevels=exclusions.level_list(),
        hostTime=host_time.isoformat(),
        pullAfter=pull_after.isoformat(),
        logName=log_name,
        eventCount=event_count,
        nrLogsResponse=response_status,
    )
    return IntegrationPayload(metrics=[summary])


def emit_run_summary(payload: IntegrationPayload, stream: Optional[TextIO] = None) -> None:
    """標準出力に 1 行の JSON として書き出す（インフラエージェントが読み取る）。"""
    out = stream or sys.stdout
    out.write(payload.model_dump_json() + "\n")
    out.flush()
