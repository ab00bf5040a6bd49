"""
生命周期事件契约（BuildEvent）。

说明：
- 编排器每个 step 的开始/成功/失败/跳过，以及会话开始/结束，都表达为一条 `BuildEvent`。
- JSONL 回放与 CLI 使用同一 wire 形态（字段名即 key）。
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal[
    "session_started",
    "step_started",
    "step_succeeded",
    "step_failed",
    "step_skipped",
    "session_ended",
]


class BuildEvent(BaseModel):
    """
    BuildEvent：编排器发出的单条生命周期事件。

    字段：
    - type：事件类型
    - timestamp：可选 RFC3339 时间字符串；实时监听时由 store 自行读时钟，回放时用于推进时钟
    - group_id/artifact_id：项目坐标
    - phase/goal/execution_id：step 坐标
    - thread_id：执行该 step 的 worker 标识（仅 step_started 有意义；缺省取当前线程）
    """

    model_config = ConfigDict(extra="forbid")

    type: EventType
    timestamp: Optional[str] = Field(default=None, description="RFC3339 时间字符串。")
    group_id: Optional[str] = None
    artifact_id: Optional[str] = None
    phase: Optional[str] = None
    goal: Optional[str] = None
    execution_id: Optional[str] = None
    thread_id: Optional[int] = None

    def to_json(self) -> str:
        """序列化为 JSON 字符串。"""

        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw_json: str) -> "BuildEvent":
        """从 JSON 字符串反序列化为 `BuildEvent`。"""

        return cls.model_validate_json(raw_json)


def format_timestamp_ms(epoch_ms: int) -> str:
    """将 epoch 毫秒格式化为 RFC3339 UTC 字符串（毫秒精度，`Z` 结尾）。"""

    dt = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=epoch_ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
