"""
Build Events（Python）。

说明：
- 观察构建编排器的 step 生命周期事件（开始/成功/失败/跳过），按 step 记录耗时与执行线程；
- 会话结束时把聚合结果写成一个 JSON 报告（每个会话一份，覆盖写）。
- 包含：
  - StepKey / MetricStore（并发聚合 + 报告渲染/落盘）
  - BuildEventListener（生命周期事件适配）
  - JSONL 事件流记录与回放
  - 配置加载器（YAML overlay + pydantic 校验）与 CLI
"""

from __future__ import annotations

from build_events.core.step_key import StepKey
from build_events.listener import BuildEventListener
from build_events.metrics.store import MetricStore, TimingRecord, render_report

__all__ = ["BuildEventListener", "MetricStore", "StepKey", "TimingRecord", "render_report", "__version__"]

__version__ = "0.1.0"
