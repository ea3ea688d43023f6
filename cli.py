"""
CLI entry point for release-kit. Runs one pipeline stage per invocation:
fetch PRs -> filter by user -> fetch work items -> resolve user stories -> consolidate -> report
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from config import load_config
from errors import ReleaseKitError
from logging_config import configure_logging
from normalize.models import ConsolidatedResult
from report.renderer import FORMATS, render, render_json
from storage import keys
from storage.handoff import HandoffStore
from storage.retry import configure_retry
from tasks import TASKS, run_task

logger = logging.getLogger("release_kit.cli")

REPORT_TASK = 'report'


def _print_json(obj):
    print(render_json(obj))


def _print_store_list(store: HandoffStore):
    _print_json(store.list_keys())


def _print_store_get(store: HandoffStore, key: str):
    value = store.get(key)
    if value is None:
        print(f"Store key not found: {key}")
    else:
        print(value)


def _clear_store(store: HandoffStore, force: bool):
    if not force:
        confirm = input(f"Are you sure you want to clear the store at {store.path}? This cannot be undone. [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted store clear.")
            return
    store.clear()
    print(f"Cleared store at {store.path}")


def _handle_store_actions(args, store: HandoffStore) -> bool:
    """Run a store inspection/management flag if one was given. Returns True when one ran."""
    flag_actions = [
        (args.store_list, lambda: _print_store_list(store)),
        (bool(args.store_get), lambda: _print_store_get(store, args.store_get)),
        (args.store_clear, lambda: _clear_store(store, args.force)),
    ]
    for enabled, handler in flag_actions:
        if enabled:
            handler()
            return True
    return False


def write_output(rendered: str, out_file: str = ''):
    """Write rendered output to a file, or to stdout when no file is given."""
    if not out_file:
        print(rendered)
        return
    out_dir = os.path.dirname(out_file)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out_file, 'w', encoding='utf-8', newline='') as fh:
        fh.write(rendered)
    print(f"Wrote report to {out_file}")


def run_report(store: HandoffStore, fmt: str, out_file: str = ''):
    raw = store.get_json(keys.CONSOLIDATED_RELEASE_DATA)
    if raw is None:
        raise ReleaseKitError(f"Nothing to report: run consolidate-release-data first (store key {keys.CONSOLIDATED_RELEASE_DATA})")
    write_output(render(ConsolidatedResult.from_dict(raw), fmt=fmt), out_file)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="release-kit", description="Release data aggregation CLI")
    parser.add_argument("task", nargs="?", choices=list(TASKS) + [REPORT_TASK], help="Pipeline stage to run")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config (defaults to config/release-kit.yaml when present)")
    parser.add_argument("--store", type=str, default=None, help="Path to SQLite handoff store (overrides RELEASE_KIT_STORE env and config)")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--output", type=str, choices=FORMATS, default="json", help="Report format for the report task")
    parser.add_argument("--out-file", type=str, default="", help="Write the report to this path instead of stdout")
    # retry/backoff knobs; RELEASE_KIT_MAX_RETRIES and RELEASE_KIT_BACKOFF_BASE set the defaults
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts per HTTP request (overrides RELEASE_KIT_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides RELEASE_KIT_BACKOFF_BASE env)")
    parser.add_argument("--store-list", action="store_true", help="List keys in the handoff store")
    parser.add_argument("--store-get", type=str, default="", help="Print the raw value stored under a key")
    parser.add_argument("--store-clear", action="store_true", help="Remove every key from the handoff store")
    parser.add_argument("--force", action="store_true", help="Skip confirmation (use with --store-clear)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base)

    if not args.task and not (args.store_list or args.store_get or args.store_clear):
        parser.error("a task is required unless a --store-* action is given")

    try:
        cfg = load_config(args.config)
        store_path = args.store or cfg.store_path
        with HandoffStore(store_path) as store:
            if _handle_store_actions(args, store):
                return 0
            if args.task == REPORT_TASK:
                run_report(store, args.output, args.out_file)
                return 0
            result = run_task(args.task, cfg, store)
            _print_json(result)
    except ReleaseKitError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
