"""CLI entrypoint.

Inspect workflow definitions and the snapshots persisted under the configured
state path.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from formflow import __version__
from formflow.config import FormflowSettings
from formflow.errors import WorkflowBuildError
from formflow.logging import configure_logging
from formflow.persistence.adapters import JsonFileAdapter
from formflow.persistence.types import PersistenceError
from formflow.workflow.builder import WorkflowBuilder
from formflow.workflow.definitions import WorkflowDefinition
from formflow.workflow.visibility import VisibilityResolver

logger = logging.getLogger(__name__)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _load_definition(path: Path) -> WorkflowDefinition:
    return WorkflowBuilder.from_json(_read_json(path)).build()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="formflow",
        description="Inspect multi-step form workflows and their saved snapshots",
    )
    parser.add_argument("--version", action="version", version=f"formflow {__version__}")
    parser.add_argument(
        "--state-path",
        type=Path,
        default=None,
        help="Snapshot directory (defaults to FORMFLOW_STATE_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Validate a workflow definition file")
    check.add_argument("definition", type=Path, help="Workflow definition JSON file")

    visibility = subparsers.add_parser(
        "visibility", help="Evaluate step visibility for a definition and some data"
    )
    visibility.add_argument("definition", type=Path, help="Workflow definition JSON file")
    visibility.add_argument(
        "--data",
        type=Path,
        default=None,
        help="JSON file with all step data, keyed by step id",
    )
    visibility.add_argument(
        "--step",
        default=None,
        help="Also print field behaviours for this step id",
    )

    snapshot = subparsers.add_parser("snapshot", help="Manage persisted workflow snapshots")
    snapshot_sub = snapshot.add_subparsers(dest="snapshot_command", required=True)
    snapshot_sub.add_parser("list", help="List stored snapshot keys")
    show = snapshot_sub.add_parser("show", help="Print one snapshot")
    show.add_argument("key", help="Storage key ('<workflow_id>' or '<user_id>:<workflow_id>')")
    remove = snapshot_sub.add_parser("remove", help="Delete one snapshot")
    remove.add_argument("key", help="Storage key")
    snapshot_sub.add_parser("purge", help="Delete expired snapshots")
    snapshot_sub.add_parser("clear", help="Delete every snapshot")

    return parser


def _adapter(settings: FormflowSettings, state_path: Path | None) -> JsonFileAdapter:
    return JsonFileAdapter(
        state_path or settings.state_path,
        key_prefix=settings.storage_key_prefix,
        max_age_seconds=settings.snapshot_max_age_seconds,
        max_total_bytes=settings.max_storage_bytes,
    )


async def _run_snapshot(args: argparse.Namespace, adapter: JsonFileAdapter) -> int:
    command = args.snapshot_command
    if command == "list":
        for key in await adapter.list_keys():
            print(key)
        return 0
    if command == "show":
        snapshot = await adapter.load(args.key)
        if snapshot is None:
            print(f"No snapshot stored under {args.key!r}", file=sys.stderr)
            return 4
        _print_json(snapshot.to_json())
        return 0
    if command == "remove":
        await adapter.remove(args.key)
        print(f"Removed {args.key}")
        return 0
    if command == "purge":
        removed = await adapter.purge_expired()
        print(f"Purged {removed} expired snapshot(s)")
        return 0
    if command == "clear":
        await adapter.clear()
        print("Cleared all snapshots")
        return 0

    logger.error("Unknown snapshot command", extra={"command": command})
    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = FormflowSettings()
    except ValidationError as e:
        # Logging is not configured yet.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "check":
            definition = _load_definition(args.definition)
            print(f"Workflow {definition.id!r} is valid ({len(definition.steps)} steps)")
            return 0

        if args.command == "visibility":
            definition = _load_definition(args.definition)
            all_data = _read_json(args.data) if args.data is not None else {}
            resolver = VisibilityResolver(
                definition.steps, cache_size=settings.visibility_cache_size
            )
            result: dict[str, object] = {"steps": resolver.resolve(all_data).to_json()}
            if args.step is not None:
                step = definition.get_step(args.step)
                if step is None:
                    print(f"Unknown step id: {args.step}", file=sys.stderr)
                    return 2
                behaviors = resolver.fields(step.form, all_data, all_data.get(args.step) or {})
                result["fields"] = {
                    field_id: {
                        "visible": b.visible,
                        "disabled": b.disabled,
                        "required": b.required,
                        "readonly": b.readonly,
                    }
                    for field_id, b in behaviors.items()
                }
            _print_json(result)
            return 0

        if args.command == "snapshot":
            return asyncio.run(_run_snapshot(args, _adapter(settings, args.state_path)))

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except WorkflowBuildError as e:
        for error in e.errors:
            print(f"error: {error}", file=sys.stderr)
        return 3

    except PersistenceError as e:
        logger.warning(str(e), extra={"code": e.code.value})
        print(str(e), file=sys.stderr)
        return 4

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
