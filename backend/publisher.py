from __future__ import annotations

import json
import logging
import ssl
from typing import Iterable, Optional

import requests
from requests.adapters import HTTPAdapter

from config import DEFAULT_LOG_API_URL
from errors import PublishError
from event_mapper import MappedLogEntry


logger = logging.getLogger(__name__)


class Tls12Adapter(HTTPAdapter):
    """TLS 1.2 のみ。証明書検証はプラットフォームの既定のまま。"""

    def init_poolmanager(self, *args, **kwargs):
        ctx = ssl.create_default_context()
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.maximum_version = ssl.TLSVersion.TLSv1_2
        kwargs["ssl_context"] = ctx
        return super().init_poolmanager(*args, **kwargs)


def build_session() -> requests.Session:
    session = requests.Session()
    session.mount("https://", Tls12Adapter())
    return session


def serialize_batch(entries: Iterable[MappedLogEntry]) -> str:
    """空白なしの JSON 配列にする。0 件なら `[]`。"""
    return json.dumps([e.model_dump() for e in entries], ensure_ascii=False, separators=(",", ":"))


def publish_logs(
    payload: str,
    *,
    license_key: str,
    url: str = DEFAULT_LOG_API_URL,
    timeout_s: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> int:
    """1 回だけ POST してステータスコードを返す。リトライはしない。"""
    session = session or build_session()
    try:
        resp = session.post(
            url,
            data=payload.encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "X-License-Key": license_key,
            },
            timeout=timeout_s,
        )
        resp.raise_for_status()
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        raise PublishError(f"log api rejected batch: {e}", status_code=status) from e
    except requests.exceptions.RequestException as e:
        raise PublishError(f"log api request failed: {e}") from e

    # raise_for_status は 3xx を通すので、2xx 以外はここで失敗にする
    if not 200 <= resp.status_code < 300:
        raise PublishError(f"log api returned non-2xx status {resp.status_code}", status_code=resp.status_code)

    logger.info("posted %d bytes to %s: %s", len(payload), url, resp.status_code)
    return int(resp.status_code)
