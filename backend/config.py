from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigError


logger = logging.getLogger(__name__)

# エントリポイントに依存せず backend/.env を読み込む
_env_path = Path(__file__).resolve().parent / ".env"

DEFAULT_NRIA_CONFIG = r"C:\Program Files\New Relic\newrelic-infra\newrelic-infra.yml"
DEFAULT_LOG_API_URL = "https://log-api.newrelic.com/log/v1"
DEFAULT_LOOKBACK_MINUTES = 15
DEFAULT_QUERY_TIMEOUT_S = 300

_LICENSE_RE = re.compile(r"^\s*license_key:\s*(\S+)", re.MULTILINE)


@dataclass(frozen=True)
class ForwarderConfig:
    license_key: str
    log_api_url: str = DEFAULT_LOG_API_URL
    state_dir: str = "."
    lookback_minutes: int = DEFAULT_LOOKBACK_MINUTES
    query_timeout_s: int = DEFAULT_QUERY_TIMEOUT_S
    http_timeout_s: Optional[float] = None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def mask_key(key: str) -> str:
    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "..." + key[-4:]


def parse_license_key(text: str) -> str:
    """`license_key:` 行の最初のトークンを返す。見つからなければ空文字。"""
    m = _LICENSE_RE.search(text or "")
    if not m:
        return ""
    return m.group(1).strip("'\"")


def read_license_key(path: str) -> str:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        raise ConfigError(f"cannot read license config {path}: {e}")

    key = parse_license_key(text)
    if not key:
        # 検証はしない。空のヘッダのまま送信され、API 側で拒否される。
        logger.warning("no license_key line found in %s", path)
    return key


def load_config(*, config_file: Optional[str] = None, state_dir: Optional[str] = None) -> ForwarderConfig:
    """.env と環境変数から設定を組み立てる。引数が指定されていればそちらを優先。"""
    # 呼び出し時に毎回読み直すので、再起動なしで変更が反映される
    load_dotenv(dotenv_path=_env_path, override=True)

    nria_config = config_file or os.getenv("NRIA_CONFIG_FILE") or DEFAULT_NRIA_CONFIG
    license_key = read_license_key(nria_config)
    logger.debug("license key loaded from %s (masked)=%s", nria_config, mask_key(license_key))

    lookback = _env_int("EVENTLOG_LOOKBACK_MINUTES", DEFAULT_LOOKBACK_MINUTES)
    if lookback < 0:
        raise ConfigError("EVENTLOG_LOOKBACK_MINUTES must not be negative")

    return ForwarderConfig(
        license_key=license_key,
        log_api_url=os.getenv("NR_LOG_API_URL") or DEFAULT_LOG_API_URL,
        state_dir=state_dir or os.getenv("EVENTLOG_STATE_DIR") or ".",
        lookback_minutes=lookback,
        query_timeout_s=_env_int("EVENTLOG_QUERY_TIMEOUT_S", DEFAULT_QUERY_TIMEOUT_S),
        http_timeout_s=_env_float("NR_HTTP_TIMEOUT_S"),
    )
