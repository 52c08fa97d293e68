import io
import json
from datetime import timedelta

from event_mapper import Exclusions
from run_summary import build_run_summary, emit_run_summary


def test_envelope_shape(fixed_now):
    payload = build_run_summary(
        log_name="Application",
        exclusions=Exclusions.from_strings(["Verbose"], ["1000"]),
        pull_after=fixed_now - timedelta(minutes=15),
        host_time=fixed_now,
        event_count=3,
        response_status=202,
    )
    buf = io.StringIO()
    emit_run_summary(payload, buf)

    text = buf.getvalue()
    assert text.endswith("\n")
    assert text.count("\n") == 1
    doc = json.loads(text)
    assert doc["name"] == "com.newrelic.winevent-forwarder"
    assert doc["integration_version"] == "0.2.1"
    assert doc["protocol_version"] == 1
    assert doc["inventory"] == {}
    assert doc["events"] == []
    assert doc["metrics"] == [
        {
            "event_type": "WinEventLogForwarderSample",
            "appVersion": "2.2",
            "excludedEvents": [1000],
            "excludedLevels": ["Verbose"],
            "hostTime": fixed_now.isoformat(),
            "pullAfter": (fixed_now - timedelta(minutes=15)).isoformat(),
            "logName": "Application",
            "eventCount": 3,
            "nrLogsResponse": 202,
        }
    ]


def test_no_exclusions_are_empty_lists(fixed_now):
    payload = build_run_summary(
        log_name="System",
        exclusions=Exclusions(),
        pull_after=fixed_now,
        host_time=fixed_now,
        event_count=0,
        response_status=202,
    )
    metric = payload.metrics[0]
    assert metric.excludedEvents == []
    assert metric.excludedLevels == []
