"""
BuildEventListener：编排器生命周期事件 -> MetricStore 的适配层。

说明：
- step 的 succeeded/failed/skipped 统一视为“结束”，仅 outcome 字段保留原因；
- 会话结束时写报告；写失败记录 warning 并继续（该策略只存在于 listener，store 本身不吞错误）；
- 可选挂载 `JsonlEventLog`：每条事件在分发前先追加到事件流，供之后 `build-events replay` 离线重算。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union

from build_events.core.contracts import BuildEvent, format_timestamp_ms
from build_events.core.errors import ReportError
from build_events.core.step_key import StepKey
from build_events.metrics.store import MetricStore, Outcome

if TYPE_CHECKING:
    from build_events.state.jsonl_events import JsonlEventLog

logger = logging.getLogger(__name__)


class BuildEventListener:
    """构建会话监听器（每个会话一个实例）。"""

    def __init__(
        self,
        output_path: Union[str, Path],
        *,
        store: Optional[MetricStore] = None,
        event_log: Optional["JsonlEventLog"] = None,
    ) -> None:
        """
        参数：
        - output_path：报告路径（由启动配置决定）
        - store：可选注入的 MetricStore（默认新建，会话开始时刻即构造时刻）
        - event_log：可选事件流捕获；挂载时先写入一条 `session_started`（时刻为 store 的会话开始时刻）
        """

        self.output_path = Path(output_path)
        self.store = store if store is not None else MetricStore()
        self.event_log = event_log
        self._handlers: Dict[str, Callable[[BuildEvent], object]] = {
            "step_started": self.step_started,
            "step_succeeded": self.step_succeeded,
            "step_failed": self.step_failed,
            "step_skipped": self.step_skipped,
            "session_ended": self.session_ended,
        }
        if self.event_log is not None:
            self.event_log.append(
                BuildEvent(type="session_started", timestamp=format_timestamp_ms(self.store.started_at_ms))
            )

    def step_started(self, event: BuildEvent) -> None:
        thread_id = event.thread_id if event.thread_id is not None else threading.get_ident()
        self.store.record_start(StepKey.from_event(event), thread_id)

    def step_succeeded(self, event: BuildEvent) -> None:
        self._step_end(event, "succeeded")

    def step_failed(self, event: BuildEvent) -> None:
        self._step_end(event, "failed")

    def step_skipped(self, event: BuildEvent) -> None:
        self._step_end(event, "skipped")

    def _step_end(self, event: BuildEvent, outcome: Outcome) -> None:
        self.store.record_end(StepKey.from_event(event), outcome=outcome)

    def session_ended(self, event: Optional[BuildEvent] = None) -> Optional[Path]:
        """
        写出会话报告，并关闭事件流捕获（若有）。

        返回：
        - Path：写入成功时的报告路径；失败时返回 None（已记录 warning）
        """

        if self.event_log is not None:
            self.event_log.close()
        try:
            return self.store.persist(self.output_path)
        except ReportError:
            logger.warning("Failed to write build events report to %s", self.output_path, exc_info=True)
            return None

    def _capture(self, event_log: "JsonlEventLog", event: BuildEvent) -> BuildEvent:
        """补齐 timestamp（以及 step_started 的 thread_id）后追加到事件流。"""

        update: Dict[str, Any] = {}
        if event.timestamp is None:
            update["timestamp"] = format_timestamp_ms(self.store.clock_ms())
        if event.type == "step_started" and event.thread_id is None:
            update["thread_id"] = threading.get_ident()
        if update:
            event = event.model_copy(update=update)
        event_log.append(event)
        return event

    def handle(self, event: BuildEvent) -> None:
        """按事件类型分发；无需处理的类型（如 session_started）直接忽略。"""

        if self.event_log is not None:
            event = self._capture(self.event_log, event)
        handler = self._handlers.get(event.type)
        if handler is not None:
            handler(event)
