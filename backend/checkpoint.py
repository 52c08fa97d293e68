from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional

from errors import CheckpointCorrupt


logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(minutes=15)


def checkpoint_filename(channel: str) -> str:
    """チャンネル名からチェックポイントのファイル名を作る（\\ と / は空白に置換）。"""
    return channel.replace("\\", " ").replace("/", " ") + ".txt"


def parse_timestamp(channel: str, text: str) -> datetime:
    try:
        ts = datetime.fromisoformat(text.strip())
    except ValueError:
        raise CheckpointCorrupt(channel, text)
    if ts.tzinfo is None:
        # 古い形式のファイルはタイムゾーンなしのローカル時刻
        ts = ts.astimezone()
    return ts


class CheckpointStore:
    """チャンネルごとの前回取得時刻。"""

    def read(self, channel: str) -> Optional[datetime]:
        raise NotImplementedError

    def write(self, channel: str, ts: datetime) -> None:
        raise NotImplementedError


class FileCheckpointStore(CheckpointStore):
    """`directory` にチャンネルごと 1 ファイル（ISO-8601 のテキスト）で保存する。"""

    def __init__(self, directory: str = "."):
        self._dir = Path(directory)

    def path_for(self, channel: str) -> Path:
        return self._dir / checkpoint_filename(channel)

    def read(self, channel: str) -> Optional[datetime]:
        path = self.path_for(channel)
        if not path.exists():
            return None
        raw = path.read_bytes()
        try:
            # PowerShell 5 の Out-File は UTF-16 (BOM 付き) で書くので、UTF-8 以外は壊れたものとして扱う
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise CheckpointCorrupt(channel, repr(raw[:80]))
        return parse_timestamp(channel, text)

    def write(self, channel: str, ts: datetime) -> None:
        path = self.path_for(channel)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}")
        tmp.write_text(ts.isoformat(), encoding="utf-8")
        os.replace(tmp, path)


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, channel: str) -> Optional[datetime]:
        raw = self._data.get(channel)
        if raw is None:
            return None
        return parse_timestamp(channel, raw)

    def write(self, channel: str, ts: datetime) -> None:
        self._data[channel] = ts.isoformat()

    def raw(self, channel: str) -> Optional[str]:
        return self._data.get(channel)


def resolve_window_start(
    store: CheckpointStore,
    channel: str,
    now: datetime,
    lookback: timedelta = DEFAULT_LOOKBACK,
) -> datetime:
    """取得開始時刻を決める。保存値があればそれ、なければ now - lookback。"""
    try:
        saved = store.read(channel)
    except CheckpointCorrupt as e:
        logger.warning("%s; falling back to the last %s", e, lookback)
        saved = None

    if saved is None:
        return now - lookback
    return saved


def advance(store: CheckpointStore, channel: str, now: datetime) -> None:
    # 取得前に書き込む。失敗した回の区間は再送されず失われる（at-most-once）。
    store.write(channel, now)
    logger.debug("checkpoint for %s advanced to %s", channel, now.isoformat())
