"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictBool


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 直接覆盖
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class BuildEventsReportConfig(BaseModel):
    """
    报告输出配置。

    说明：
    - `output_path` 相对路径相对 workspace root 解析（见 `build_events.bootstrap`）；
    - `include_outcome` 默认关闭，保证报告只包含固定的 8 个字段；
    - `indent` 为 None 时紧凑输出。
    """

    model_config = ConfigDict(extra="forbid")

    output_path: str = Field(default="target/build-events.json", min_length=1)
    include_outcome: StrictBool = False
    indent: Optional[int] = Field(default=None, ge=0)


class BuildEventsStoreConfig(BaseModel):
    """MetricStore 并发 map 参数。"""

    model_config = ConfigDict(extra="forbid")

    shards: int = Field(default=16, ge=1)


class BuildEventsEventsConfig(BaseModel):
    """
    事件流捕获配置。

    说明：
    - `capture_path` 非空时，listener 把每条生命周期事件追加到该 JSONL（每个会话覆盖写），
      之后可用 `build-events replay` 离线重算同一份报告；相对路径相对 workspace root。
    """

    model_config = ConfigDict(extra="forbid")

    capture_path: Optional[str] = Field(default=None, min_length=1)


class BuildEventsLoggingConfig(BaseModel):
    """日志级别（CLI 入口据此配置 root logger）。"""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING")


class BuildEventsConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    report: BuildEventsReportConfig = Field(default_factory=BuildEventsReportConfig)
    store: BuildEventsStoreConfig = Field(default_factory=BuildEventsStoreConfig)
    events: BuildEventsEventsConfig = Field(default_factory=BuildEventsEventsConfig)
    logging: BuildEventsLoggingConfig = Field(default_factory=BuildEventsLoggingConfig)


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping(dict): {path}")
    return data


def load_config_dicts(config_dicts: list[Dict[str, Any]]) -> BuildEventsConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `BuildEventsConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return BuildEventsConfig.model_validate(merged)


def load_config(config_paths: list[Path]) -> BuildEventsConfig:
    """
    加载并合并多个配置文件，返回校验后的 `BuildEventsConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
