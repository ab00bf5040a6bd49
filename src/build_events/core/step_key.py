"""
StepKey：step 的身份键（项目坐标 + step 坐标）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from build_events.core.contracts import BuildEvent


@dataclass(frozen=True)
class StepKey:
    """
    不可变、可哈希的 step 身份。

    说明：
    - 五个字段全部参与相等性与 hash；
    - 字段按原样保存（允许 None/空串），构造永不失败。
    """

    group_id: Optional[str]
    artifact_id: Optional[str]
    phase: Optional[str]
    goal: Optional[str]
    execution_id: Optional[str]

    @classmethod
    def from_event(cls, event: BuildEvent) -> "StepKey":
        """从生命周期事件构造新的 key（每次调用都新建，不做缓存）。"""

        return cls(
            group_id=event.group_id,
            artifact_id=event.artifact_id,
            phase=event.phase,
            goal=event.goal,
            execution_id=event.execution_id,
        )
