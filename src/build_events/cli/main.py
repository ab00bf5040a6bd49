"""
Build Events CLI（replay/config）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- stdout 输出机器可读 JSON；失败时也输出 JSON

退出码：
- 0：成功
- 2：参数/配置校验失败
- 20：事件流文件不存在、无法读取或无法解析
- 22：报告写入失败
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from build_events import bootstrap
from build_events.core.errors import EventStreamError, FrameworkIssue, ReportError
from build_events.state.jsonl_events import iter_jsonl_events, replay_events


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象（必须可 JSON dumps）
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _issues_payload(issue: FrameworkIssue) -> Dict[str, Any]:
    return {"issues": [asdict(issue)]}


def _resolve_workspace_root(raw: str) -> Optional[Path]:
    ws = Path(raw).expanduser().resolve()
    if not ws.is_dir():
        return None
    return ws


def _resolve_session(args: argparse.Namespace, ws: Path, env: Optional[Dict[str, str]]) -> bootstrap.ResolvedSession:
    config_paths: List[Path] = [Path(p) for p in (args.config or [])]
    return bootstrap.resolve_session(workspace_root=ws, config_paths=config_paths, env=env)


def build_parser() -> argparse.ArgumentParser:
    """构造 CLI 参数解析器。"""

    parser = argparse.ArgumentParser(prog="build-events", description="Build step timing report tools")
    root_sub = parser.add_subparsers(dest="cmd", required=True)

    replay = root_sub.add_parser("replay", help="Replay a JSONL lifecycle event stream and write the report")
    replay.add_argument("--events", required=True, help="Events JSONL path (relative to workspace root if not absolute).")
    replay.add_argument("--output", default=None, help="Report path (overrides config and BUILD_EVENTS_OUTPUT).")
    replay.add_argument("--workspace-root", default=".", help="Workspace root directory (default: .)")
    replay.add_argument("--config", action="append", default=None, help="Config overlay YAML (repeatable).")
    replay.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    config = root_sub.add_parser("config", help="Print the effective configuration")
    config.add_argument("--workspace-root", default=".", help="Workspace root directory (default: .)")
    config.add_argument("--config", action="append", default=None, help="Config overlay YAML (repeatable).")
    config.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def _handle_replay(args: argparse.Namespace, ws: Path, session: bootstrap.ResolvedSession) -> int:
    events_path = Path(args.events).expanduser()
    if not events_path.is_absolute():
        events_path = ws / events_path
    output_path = Path(args.output).expanduser() if args.output else session.output_path
    if not output_path.is_absolute():
        output_path = ws / output_path

    cfg = session.config
    try:
        events = list(iter_jsonl_events(events_path))
        listener = replay_events(
            events,
            output_path=output_path,
            shards=cfg.store.shards,
            include_outcome=cfg.report.include_outcome,
            indent=cfg.report.indent,
        )
    except FileNotFoundError:
        issue = FrameworkIssue(
            code="CLI_EVENTS_NOT_FOUND",
            message="Events file not found.",
            details={"path": str(events_path)},
        )
        _dump_json_to_stdout(_issues_payload(issue), pretty=args.pretty)
        return 20
    except OSError as exc:
        issue = FrameworkIssue(
            code="CLI_EVENTS_UNREADABLE",
            message="Events file cannot be read.",
            details={"path": str(events_path), "reason": str(exc)},
        )
        _dump_json_to_stdout(_issues_payload(issue), pretty=args.pretty)
        return 20
    except EventStreamError as exc:
        _dump_json_to_stdout(_issues_payload(exc.to_issue()), pretty=args.pretty)
        return 20

    try:
        written = listener.store.persist(listener.output_path)
    except ReportError as exc:
        _dump_json_to_stdout(_issues_payload(exc.to_issue()), pretty=args.pretty)
        return 22

    snapshot = listener.store.snapshot()
    payload = {
        "report_path": str(written),
        "events_total": len(events),
        "steps_total": len(snapshot),
        "steps_unfinished": sum(1 for r in snapshot if r.end is None),
    }
    _dump_json_to_stdout(payload, pretty=args.pretty)
    return 0


def _handle_config(args: argparse.Namespace, session: bootstrap.ResolvedSession) -> int:
    payload = {
        "config": session.config.model_dump(),
        "output_path": str(session.output_path),
        "capture_path": str(session.capture_path) if session.capture_path else None,
        "overlay_paths": session.overlay_paths,
        "sources": session.sources,
    }
    _dump_json_to_stdout(payload, pretty=args.pretty)
    return 0


def main(argv: Optional[Sequence[str]] = None, *, env: Optional[Dict[str, str]] = None) -> int:
    """CLI 入口；返回进程退出码。"""

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    ws = _resolve_workspace_root(args.workspace_root)
    if ws is None:
        issue = FrameworkIssue(
            code="CLI_WORKSPACE_ROOT_NOT_FOUND",
            message="Workspace root is not found or not a directory.",
            details={"workspace_root": str(args.workspace_root)},
        )
        _dump_json_to_stdout(_issues_payload(issue), pretty=args.pretty)
        return 2

    try:
        session = _resolve_session(args, ws, env)
    except (FileNotFoundError, ValidationError, ValueError) as exc:
        issue = FrameworkIssue(
            code="CLI_CONFIG_INVALID",
            message="Config is invalid.",
            details={"reason": str(exc)},
        )
        _dump_json_to_stdout(_issues_payload(issue), pretty=args.pretty)
        return 2

    logging.basicConfig(level=getattr(logging, session.config.logging.level))

    if args.cmd == "replay":
        return _handle_replay(args, ws, session)
    return _handle_config(args, session)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
