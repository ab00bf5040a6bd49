"""
MetricStore：step 身份 -> 计时记录 的并发聚合，以及 JSON 报告渲染/落盘。

约定：
- 时间均为“会话开始以来的毫秒偏移”（offset），会话开始时刻在 store 构造时捕获一次；
- 每个会话一个 store 实例，不存在跨会话共享状态；
- `record_start` / `record_end` 永不抛异常；`persist` 是唯一可能失败的操作。

报告格式（每条记录的 key 顺序固定）：
`[{"groupId":..,"artifactId":..,"phase":..,"goal":..,"id":..,"threadId":1,"start":12,"end":340}]`
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Union

from build_events.core.errors import DirectoryCreationError, ReportWriteError
from build_events.core.step_key import StepKey
from build_events.metrics.concurrent_map import ShardedMap

Outcome = Literal["started", "succeeded", "failed", "skipped"]


def wall_clock_ms() -> int:
    """当前 wall-clock 毫秒数。"""

    return time.time_ns() // 1_000_000


@dataclass
class TimingRecord:
    """
    单个 step 的计时记录。

    字段：
    - key：所属 StepKey（按值持有）
    - thread_id：执行该 step 的 worker 标识
    - start：开始偏移（创建时设置，之后不再修改）
    - end：结束偏移；运行中为 None
    - outcome：结束原因；默认报告不输出（success/fail/skip 统一视为“结束”）
    """

    key: StepKey
    thread_id: int
    start: int
    end: Optional[int] = None
    outcome: Outcome = "started"

    def finish(self, end: int, outcome: Outcome) -> None:
        """标记结束（重复调用会覆盖 end）。"""

        self.end = end
        self.outcome = outcome

    def to_json_object(self, *, include_outcome: bool = False) -> Dict[str, Any]:
        """返回单条报告对象（key 顺序即报告字段顺序）。"""

        obj: Dict[str, Any] = {
            "groupId": _text(self.key.group_id),
            "artifactId": _text(self.key.artifact_id),
            "phase": _text(self.key.phase),
            "goal": _text(self.key.goal),
            "id": _text(self.key.execution_id),
            "threadId": self.thread_id,
            "start": self.start,
            "end": self.end,
        }
        if include_outcome:
            obj["outcome"] = self.outcome
        return obj


def _text(value: Optional[str]) -> str:
    # 缺失的身份字段原样输出为 "null"，便于排障
    return "null" if value is None else str(value)


def render_report(
    records: Iterable[TimingRecord],
    *,
    include_outcome: bool = False,
    indent: Optional[int] = None,
) -> str:
    """
    将记录序列渲染为 JSON 数组文本（纯函数）。

    参数：
    - records：计时记录；输出顺序与输入顺序一致
    - include_outcome：是否在每条记录末尾追加 `outcome` 字段
    - indent：None 表示紧凑输出（无空白）；否则按缩进 pretty-print

    返回：
    - str：空输入时恰为 `[]`
    """

    payload = [r.to_json_object(include_outcome=include_outcome) for r in records]
    if indent is None:
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return json.dumps(payload, ensure_ascii=False, indent=indent)


class MetricStore:
    """
    单会话的 step 计时聚合器。

    并发：
    - 内部使用分片 map（每个 shard 一把锁），编排器的多个 worker 线程可直接并发调用；
    - 同一 key 的并发 `record_start` 自由竞争，最后完成的插入胜出。
    """

    def __init__(
        self,
        *,
        clock: Callable[[], int] = wall_clock_ms,
        shards: int = 16,
        include_outcome: bool = False,
        indent: Optional[int] = None,
    ) -> None:
        """
        参数：
        - clock：毫秒时钟（默认 wall-clock；回放时注入 ReplayClock）
        - shards：并发 map 分片数量
        - include_outcome/indent：报告渲染选项（见 `render_report`）
        """

        self._clock = clock
        self._started_at = int(clock())
        self._records: ShardedMap[StepKey, TimingRecord] = ShardedMap(shards=shards)
        self.include_outcome = include_outcome
        self.indent = indent

    @property
    def started_at_ms(self) -> int:
        """会话开始时刻（时钟原始毫秒值）。"""

        return self._started_at

    def clock_ms(self) -> int:
        """读取时钟原始毫秒值（未减去会话开始时刻）。"""

        return int(self._clock())

    def millis(self) -> int:
        """返回会话开始以来的毫秒偏移。"""

        return int(self._clock()) - self._started_at

    def record_start(self, key: StepKey, thread_id: int, now_millis: Optional[int] = None) -> None:
        """插入新记录（start=now，end=None），覆盖同 key 的旧记录。"""

        start = self.millis() if now_millis is None else now_millis
        self._records.put(key, TimingRecord(key=key, thread_id=thread_id, start=start))

    def record_end(self, key: StepKey, now_millis: Optional[int] = None, *, outcome: Outcome = "succeeded") -> None:
        """
        为已开始的记录设置 end。

        说明：
        - key 不存在（未见到 start，或事件乱序）时静默忽略；
        - 不校验 end >= start；重复调用会覆盖 end。
        """

        end = self.millis() if now_millis is None else now_millis
        self._records.update(key, lambda record: record.finish(end, outcome))

    def get(self, key: StepKey) -> Optional[TimingRecord]:
        """返回 key 对应的当前记录；未开始过的 step 返回 None。"""

        return self._records.get(key)

    def snapshot(self) -> List[TimingRecord]:
        """返回当前全部记录（顺序不保证；并发修改下弱一致）。"""

        return self._records.values()

    def render(self, records: Optional[Iterable[TimingRecord]] = None) -> str:
        """按本 store 的渲染选项渲染报告；records 缺省时使用 `snapshot()`。"""

        if records is None:
            records = self.snapshot()
        return render_report(records, include_outcome=self.include_outcome, indent=self.indent)

    def persist(self, path: Union[str, Path]) -> Path:
        """
        将当前快照写入报告文件（覆盖已有文件）。

        参数：
        - path：报告路径；父目录不存在时递归创建

        返回：
        - Path：实际写入的路径

        异常：
        - DirectoryCreationError：父目录无法创建
        - ReportWriteError：文件无法打开或写入（可能残留部分内容）
        """

        target = Path(path)
        directory = target.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DirectoryCreationError(str(directory), reason=str(exc)) from exc

        text = self.render(self.snapshot())
        try:
            with target.open("w", encoding="utf-8") as fh:
                fh.write(text)
        except OSError as exc:
            raise ReportWriteError(str(target), reason=str(exc)) from exc
        return target

    def __len__(self) -> int:
        return len(self._records)
