"""Tests for batch serialization and the Log API POST."""

import json
import ssl
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_event
from errors import PublishError
from event_mapper import Exclusions, map_events
from publisher import Tls12Adapter, build_session, publish_logs, serialize_batch


def _response(status):
    resp = requests.Response()
    resp.status_code = status
    resp.url = "https://log-api.newrelic.com/log/v1"
    return resp


def _session(status=202):
    session = MagicMock()
    session.post.return_value = _response(status)
    return session


class TestSerializeBatch:
    def test_empty_batch_is_empty_array(self):
        assert serialize_batch([]) == "[]"

    def test_compact_array(self):
        entries = map_events([make_event(), make_event(event_id=7036)], Exclusions(), hostname="h")
        body = serialize_batch(entries)
        decoded = json.loads(body)
        assert body == json.dumps(decoded, ensure_ascii=False, separators=(",", ":"))
        assert [d["EventID"] for d in decoded] == [1000, 7036]

    def test_non_ascii_message_kept(self):
        entries = map_events([make_event(message="サービスが開始されました")], Exclusions(), hostname="h")
        assert "サービスが開始されました" in serialize_batch(entries)


class TestPublishLogs:
    def test_headers_and_body(self):
        session = _session()
        status = publish_logs("[]", license_key="KEY", url="https://example.test/log/v1", session=session)
        assert status == 202
        args, kwargs = session.post.call_args
        assert args == ("https://example.test/log/v1",)
        assert kwargs["data"] == b"[]"
        assert kwargs["headers"] == {"Content-Type": "application/json", "X-License-Key": "KEY"}
        assert kwargs["timeout"] is None

    def test_single_attempt_on_error_status(self):
        session = _session(503)
        with pytest.raises(PublishError) as exc:
            publish_logs("[]", license_key="KEY", session=session)
        assert exc.value.status_code == 503
        assert session.post.call_count == 1

    @pytest.mark.parametrize("status", [301, 304, 307])
    def test_redirect_status_is_failure(self, status):
        session = _session(status)
        with pytest.raises(PublishError) as exc:
            publish_logs("[]", license_key="KEY", session=session)
        assert exc.value.status_code == status
        assert session.post.call_count == 1

    def test_forbidden(self):
        with pytest.raises(PublishError) as exc:
            publish_logs("[]", license_key="", session=_session(403))
        assert exc.value.status_code == 403

    def test_transport_error(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("connection refused")
        with pytest.raises(PublishError) as exc:
            publish_logs("[]", license_key="KEY", session=session)
        assert exc.value.status_code is None
        assert session.post.call_count == 1


def test_session_pins_tls12():
    session = build_session()
    adapter = session.get_adapter("https://log-api.newrelic.com/log/v1")
    assert isinstance(adapter, Tls12Adapter)
    ctx = adapter.poolmanager.connection_pool_kw["ssl_context"]
    assert ctx.minimum_version == ssl.TLSVersion.TLSv1_2
    assert ctx.maximum_version == ssl.TLSVersion.TLSv1_2
    assert ctx.verify_mode == ssl.CERT_REQUIRED
