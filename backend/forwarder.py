"""1 チャンネル分の新しい Windows イベントログを New Relic Log API に転送する。

タスクスケジューラ等からチャンネルごとに 1 回ずつ起動する。1 回の実行の流れ:

    チェックポイント読込 -> チェックポイント更新 -> 取得 -> 除外/変換 -> POST -> 実行サマリ出力

チェックポイントは取得より前に進めるため、失敗した回の区間は次回に再送されず失われる。
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, TextIO

import checkpoint
import publisher
import windows_collect
from config import ForwarderConfig, load_config
from errors import ForwarderError
from event_mapper import Exclusions, map_events
from run_summary import IntegrationPayload, build_run_summary, emit_run_summary


logger = logging.getLogger("forwarder")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def run_once(
    log_name: str,
    exclusions: Exclusions,
    *,
    config: ForwarderConfig,
    store: checkpoint.CheckpointStore,
    fetch: Optional[Callable[..., list]] = None,
    publish: Optional[Callable[..., int]] = None,
    out: Optional[TextIO] = None,
    clock: Optional[Callable[[], datetime]] = None,
    hostname: Optional[str] = None,
    dry_run: bool = False,
) -> Optional[IntegrationPayload]:
    """1 チャンネル分の取得から送信、サマリ出力までを実行する。

    dry_run のときはチェックポイントを進めず、送信もせずに本文を `out` に書いて None を返す。
    """
    fetch = fetch or windows_collect.collect_eventlog
    publish = publish or publisher.publish_logs
    out = out or sys.stdout
    clock = clock or _now

    started = clock()
    pull_after = checkpoint.resolve_window_start(
        store, log_name, started, timedelta(minutes=config.lookback_minutes)
    )
    if not dry_run:
        checkpoint.advance(store, log_name, started)

    raw_events = fetch(log_name, pull_after, timeout_s=config.query_timeout_s)
    entries = map_events(raw_events, exclusions, hostname=hostname or socket.gethostname(), clock=clock)
    logger.info(
        "%s: %d fetched, %d excluded, %d to send",
        log_name,
        len(raw_events),
        len(raw_events) - len(entries),
        len(entries),
    )

    body = publisher.serialize_batch(entries)
    if dry_run:
        out.write(body + "\n")
        out.flush()
        return None

    status = publish(
        body,
        license_key=config.license_key,
        url=config.log_api_url,
        timeout_s=config.http_timeout_s,
    )

    payload = build_run_summary(
        log_name=log_name,
        exclusions=exclusions,
        pull_after=pull_after,
        host_time=clock(),
        event_count=len(entries),
        response_status=status,
    )
    emit_run_summary(payload, out)
    return payload


def _split_values(values: Optional[List[str]]) -> Optional[List[str]]:
    # "--exclude-event-ids 1000,1001 4625" -> ["1000", "1001", "4625"]
    if not values:
        return None
    items: List[str] = []
    for v in values:
        if not v.strip():
            # 明示的な空文字のレベル名はフィルタ値として扱う
            items.append(v.strip())
            continue
        items.extend(p.strip() for p in v.split(",") if p.strip())
    return items


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="winevent-forwarder",
        description="Forward new Windows Event Log entries to the New Relic Log API",
    )
    parser.add_argument("log_name", nargs="?", help="event log channel, e.g. Application")
    parser.add_argument("--log-name", dest="log_name_opt", default=None, help="same as the positional argument")
    parser.add_argument("--exclude-levels", nargs="*", default=None, metavar="LEVEL",
                        help="level display names to drop (e.g. Information Verbose)")
    parser.add_argument("--exclude-event-ids", nargs="*", default=None, metavar="ID",
                        help="numeric event ids to drop")
    parser.add_argument("--state-dir", default=None, help="directory for checkpoint files")
    parser.add_argument("--config-file", default=None, help="newrelic-infra.yml holding license_key")
    parser.add_argument("--dry-run", action="store_true", help="print the batch instead of sending it")
    parser.add_argument("--list-logs", action="store_true", help="list available event log channels and exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _setup_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else (os.getenv("FORWARDER_LOG_LEVEL") or "INFO").upper()
    # 標準出力は実行サマリ専用なのでログは標準エラーへ
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.list_logs:
        try:
            logs = windows_collect.collect_eventlog_log_list()
        except ForwarderError as e:
            logger.error("cannot list event logs: %s", e)
            return 1
        print(json.dumps(logs, ensure_ascii=False, indent=2))
        return 0

    log_name = args.log_name_opt or args.log_name
    if not log_name:
        parser.error("a log name is required")

    try:
        exclusions = Exclusions.from_strings(
            _split_values(args.exclude_levels),
            _split_values(args.exclude_event_ids),
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        config = load_config(config_file=args.config_file, state_dir=args.state_dir)
        store = checkpoint.FileCheckpointStore(config.state_dir)
        run_once(log_name, exclusions, config=config, store=store, dry_run=args.dry_run)
    except ForwarderError as e:
        logger.error("run for %s failed: %s", log_name, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
