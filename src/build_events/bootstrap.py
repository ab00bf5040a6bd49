"""
Bootstrap（进程启动：配置发现 / 报告路径决定 / listener 构造）。

设计目标：
- 保持核心（StepKey/MetricStore）无隐式 I/O：只有 bootstrap 读取环境变量与 overlay 文件；
- overlay 发现规则固定、顺序稳定，便于排障。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

from build_events.config.defaults import load_default_config_dict
from build_events.config.loader import BuildEventsConfig, load_config_dicts, load_yaml_file
from build_events.listener import BuildEventListener
from build_events.metrics.store import MetricStore
from build_events.state.jsonl_events import JsonlEventLog

ENV_CONFIG_PATHS = "BUILD_EVENTS_CONFIG_PATHS"
ENV_OUTPUT = "BUILD_EVENTS_OUTPUT"


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """读取 env 并返回非空白字符串（否则视为未设置）。"""

    v = (env if env is not None else os.environ).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> list[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白与空项，保序）。"""

    parts: list[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def _resolve_against(workspace_root: Path, raw: str) -> Path:
    p = Path(raw).expanduser()
    if not p.is_absolute():
        p = workspace_root / p
    return p.resolve()


def discover_overlay_paths(*, workspace_root: Path, env: Optional[Mapping[str, str]] = None) -> list[Path]:
    """
    overlay 路径发现规则（固定，顺序稳定）：
    1) 默认 overlay：`<workspace_root>/config/build-events.yaml`（存在时）
    2) `BUILD_EVENTS_CONFIG_PATHS`（逗号/分号分隔；相对路径相对 workspace_root）
    """

    ws = Path(workspace_root).resolve()
    overlays: list[Path] = []

    default_overlay = (ws / "config" / "build-events.yaml").resolve()
    if default_overlay.exists():
        overlays.append(default_overlay)

    raw = _get_env_nonempty(ENV_CONFIG_PATHS, env=env) or ""
    for p in _split_paths(raw):
        overlays.append(_resolve_against(ws, p))

    # 去重（按 canonical path；保序）
    seen: set[Path] = set()
    uniq: list[Path] = []
    for p in overlays:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


@dataclass(frozen=True)
class ResolvedSession:
    """bootstrap 解析结果：生效配置、报告路径与来源。

    字段：
    - config：合并校验后的配置
    - output_path：最终报告路径（绝对路径）
    - overlay_paths：参与合并的 overlay 文件（字符串化，按合并顺序）
    - capture_path：事件流捕获路径（绝对路径；未配置时为 None）
    - sources：关键字段来源（例如 `report.output_path` 来自 env 还是 yaml）
    """

    config: BuildEventsConfig
    output_path: Path
    overlay_paths: list[str]
    sources: Dict[str, str]
    capture_path: Optional[Path] = None


def resolve_session(
    *,
    workspace_root: Path,
    config_paths: Optional[Sequence[Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ResolvedSession:
    """
    解析有效配置（env > 显式 config_paths > 发现的 overlays > 内置默认）。

    参数：
    - workspace_root：相对路径锚点
    - config_paths：调用方显式给出的 overlay（追加在发现结果之后）
    - env：环境变量映射（默认 os.environ）

    异常：
    - FileNotFoundError / ValueError：overlay 不存在或根节点不是 mapping
    - pydantic.ValidationError：配置校验失败
    """

    ws = Path(workspace_root).resolve()
    overlay_paths = discover_overlay_paths(workspace_root=ws, env=env)
    for p in config_paths or []:
        pp = _resolve_against(ws, str(p))
        if pp not in overlay_paths:
            overlay_paths.append(pp)

    dicts = [load_default_config_dict()]
    for p in overlay_paths:
        dicts.append(load_yaml_file(p))
    cfg = load_config_dicts(dicts)

    sources: Dict[str, str] = {}
    override = _get_env_nonempty(ENV_OUTPUT, env=env)
    if override is not None:
        output_path = _resolve_against(ws, override)
        sources["report.output_path"] = f"env:{ENV_OUTPUT}"
    else:
        output_path = _resolve_against(ws, cfg.report.output_path)
        label = "embedded_default"
        for p, d in zip(overlay_paths, dicts[1:]):
            if "output_path" in (d.get("report") or {}):
                label = f"overlay:{p}"
        sources["report.output_path"] = f"yaml:{label}"

    capture_path = None
    if cfg.events.capture_path:
        capture_path = _resolve_against(ws, cfg.events.capture_path)

    return ResolvedSession(
        config=cfg,
        output_path=output_path,
        overlay_paths=[str(p) for p in overlay_paths],
        sources=sources,
        capture_path=capture_path,
    )


def build_listener(
    *,
    workspace_root: Path,
    config_paths: Optional[Sequence[Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> BuildEventListener:
    """
    构造一个新会话的 listener（会话开始时刻即本次调用时刻）。

    说明：
    - 配置了 `events.capture_path` 时挂载事件流捕获（覆盖上一会话的捕获文件）。
    """

    session = resolve_session(workspace_root=workspace_root, config_paths=config_paths, env=env)
    cfg = session.config
    store = MetricStore(
        shards=cfg.store.shards,
        include_outcome=cfg.report.include_outcome,
        indent=cfg.report.indent,
    )
    event_log = JsonlEventLog(path=session.capture_path, truncate=True) if session.capture_path else None
    return BuildEventListener(session.output_path, store=store, event_log=event_log)
