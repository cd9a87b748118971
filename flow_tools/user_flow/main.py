"""
Command line helpers for saved user flows.

    python -m flow_tools.user_flow.main save flow-artifacts.json
    python -m flow_tools.user_flow.main steps flow-artifacts.json
    python -m flow_tools.user_flow.main report flow_result_1718000000000_42_0 --max-chars 8000 --save
    python -m flow_tools.user_flow.main list --kind flow_report

`steps` and `report` take either a JSON file or the id of an entry in the artifact store
(`FLOW_ARTIFACTS_DIR`).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .artifacts import KIND_FLOW_ARTIFACTS, KIND_FLOW_RESULT, KIND_REPORT, ArtifactRef, FlowArtifactStore
from .config import FlowConfig
from .flow.errors import FlowError
from .flow.pipeline import get_default_flow_name, get_step_name
from .report import render_flow_report
from .types import FlowArtifacts, FlowResult

logger = logging.getLogger("flow.user_flow.main")


def _load_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _store() -> FlowArtifactStore:
    return FlowArtifactStore(FlowConfig.from_env().artifacts_dir)


def _load_flow_artifacts(source: str) -> FlowArtifacts:
    if Path(source).is_file():
        return FlowArtifacts.from_dict(_load_json(source))
    return _store().get_flow_artifacts(source)


def _load_flow_result(source: str) -> FlowResult:
    if Path(source).is_file():
        return FlowResult.from_dict(_load_json(source))
    return _store().get_flow_result(source)


def describe_steps(flow_artifacts: FlowArtifacts) -> list[str]:
    lines = [
        f"{index}. [{step.gather_mode}] {get_step_name(step)}"
        for index, step in enumerate(flow_artifacts.gather_steps, start=1)
    ]
    lines.append(f"flow: {flow_artifacts.name or get_default_flow_name(flow_artifacts.gather_steps)}")
    return lines


def save_document(store: FlowArtifactStore, data: Any) -> ArtifactRef:
    """Store a flow artifacts or flow result document, telling them apart by shape."""
    if isinstance(data, dict) and "gatherSteps" in data:
        return store.put_flow_artifacts(FlowArtifacts.from_dict(data))
    if isinstance(data, dict) and "steps" in data:
        return store.put_flow_result(FlowResult.from_dict(data))
    raise ValueError("expected a flow artifacts (gatherSteps) or flow result (steps) document")


def _cmd_steps(args: argparse.Namespace) -> int:
    print("\n".join(describe_steps(_load_flow_artifacts(args.source))))
    return 0


def _cmd_report(args: argparse.Namespace) -> int:
    flow_result = _load_flow_result(args.source)
    max_chars = args.max_chars if args.max_chars is not None else FlowConfig.from_env().report_max_chars
    text = render_flow_report(flow_result, max_chars=max_chars)
    sys.stdout.write(text)
    if args.save:
        ref = _store().put_report(text, metadata={"name": flow_result.name, "steps": len(flow_result.steps)})
        print(f"saved: {ref.id}", file=sys.stderr)
    return 0


def _cmd_save(args: argparse.Namespace) -> int:
    ref = save_document(_store(), _load_json(args.source))
    print(ref.id)
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    for item in _store().list(limit=args.limit, kind=args.kind):
        name = (item.get("meta") or {}).get("name") or ""
        print(f"{item['id']}\t{item['kind']}\t{item['bytes']}\t{item['createdAt']}\t{name}".rstrip())
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    return 0 if _store().delete(artifact_id=args.source) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="user-flow", description="Inspect and store saved user flows.")
    sub = parser.add_subparsers(dest="command", required=True)

    steps = sub.add_parser("steps", help="List the gather steps of saved flow artifacts (file or store id)")
    steps.add_argument("source")
    steps.set_defaults(func=_cmd_steps)

    report = sub.add_parser("report", help="Render a saved flow result (file or store id) as Markdown")
    report.add_argument("source")
    report.add_argument("--max-chars", type=int, default=None)
    report.add_argument("--save", action="store_true", help="Also keep the rendered report in the store")
    report.set_defaults(func=_cmd_report)

    save = sub.add_parser("save", help="Copy a flow artifacts or flow result JSON file into the store")
    save.add_argument("source")
    save.set_defaults(func=_cmd_save)

    listing = sub.add_parser("list", help="List store entries, newest first")
    listing.add_argument("--kind", choices=[KIND_FLOW_ARTIFACTS, KIND_FLOW_RESULT, KIND_REPORT], default=None)
    listing.add_argument("--limit", type=int, default=20)
    listing.set_defaults(func=_cmd_list)

    delete = sub.add_parser("delete", help="Remove a store entry")
    delete.add_argument("source", metavar="id")
    delete.set_defaults(func=_cmd_delete)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    args = build_parser().parse_args(argv)
    try:
        return int(args.func(args))
    except FlowError as e:
        logger.error("flow_error kind=%s action=%s reason=%s", e.kind, e.action, e.reason)
        return 2
    except (OSError, ValueError) as e:
        logger.error("invalid_input command=%s source=%s error=%s", args.command, getattr(args, "source", None), e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
