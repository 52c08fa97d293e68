from datetime import datetime, timezone

import pytest

from config import ForwarderConfig
from windows_collect import RawEvent


def make_event(event_id=1000, level_name="Information", log_name="Application", **overrides):
    fields = dict(
        process_id=4242,
        user_id="S-1-5-18",
        message="The service started.",
        machine_name="WIN-HOST01.corp.local",
        log_name=log_name,
        level=4,
        level_display_name=level_name,
        event_id=event_id,
        provider_name="MsiInstaller",
        time_created="2026-10-19T09:55:00.1234567Z",
        record_id=98765,
    )
    fields.update(overrides)
    return RawEvent(**fields)


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def config(tmp_path):
    return ForwarderConfig(license_key="abc123licensekeyNRAL", state_dir=str(tmp_path))
