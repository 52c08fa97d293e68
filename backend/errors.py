from __future__ import annotations

from typing import Optional


class ForwarderError(Exception):
    """実行を打ち切る失敗の基底クラス。"""


class ConfigError(ForwarderError):
    pass


class CheckpointCorrupt(ForwarderError):
    def __init__(self, channel: str, content: str):
        super().__init__(f"checkpoint for {channel!r} is not a timestamp: {content[:80]!r}")
        self.channel = channel
        self.content = content


class EventQueryError(ForwarderError):
    pass


class PublishError(ForwarderError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
