"""
生命周期事件流（JSONL）的记录与回放。

实现约定：
- 每行一个紧凑 JSON 对象（`BuildEvent.to_json()`），文件 append-only；
- `append()` 返回 **0-based 行号**；
- 回放时用事件自带的 timestamp 推进 `ReplayClock`，使离线重算的 offset 与实时监听一致。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, TextIO, Union

from pydantic import ValidationError

from build_events.core.contracts import BuildEvent
from build_events.core.errors import EventStreamError
from build_events.listener import BuildEventListener
from build_events.metrics.store import MetricStore


def parse_timestamp_ms(ts: str) -> int:
    """
    解析 RFC3339 时间字符串为 epoch 毫秒（UTC）。

    参数：
    - ts：RFC3339 时间字符串（例如 `2026-02-09T00:00:00.250Z`）

    异常：
    - ValueError：解析失败
    """

    raw = (ts or "").strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt.astimezone(timezone.utc) - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


@dataclass
class JsonlEventLog:
    """
    追加写 JSONL 的生命周期事件日志。

    参数：
    - path：日志文件路径（父目录不存在时自动创建）
    - truncate：为 True 时清空已有内容（每个会话一份事件流）；默认续写
    """

    path: Path
    truncate: bool = False

    def __post_init__(self) -> None:
        """确保目录存在、按需清空，并计算下一个写入 index。"""

        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.truncate:
            self.path.write_text("", encoding="utf-8")
        self._lock = threading.RLock()
        self._next_index = self._scan_next_index()
        self._fh: Optional[TextIO] = self.path.open("a", encoding="utf-8")

    def _scan_next_index(self) -> int:
        """扫描现有文件以获得下一个可用 line index（0-based）。"""

        if not self.path.exists():
            return 0
        count = 0
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    count += 1
        return count

    def append(self, event: BuildEvent) -> int:
        """追加一条事件，返回其 line index（0-based）。"""

        line = event.to_json()
        with self._lock:
            index = self._next_index
            if self._fh is None or self._fh.closed:
                self._fh = self.path.open("a", encoding="utf-8")
            self._fh.write(line)
            self._fh.write("\n")
            self._fh.flush()
            self._next_index += 1
        return index

    def iter_events(self) -> Iterator[BuildEvent]:
        """按文件顺序迭代事件。"""

        return iter_jsonl_events(self.path)

    def close(self) -> None:
        """关闭日志句柄。"""

        with self._lock:
            if self._fh is None:
                return
            try:
                self._fh.close()
            finally:
                self._fh = None

    def __enter__(self) -> "JsonlEventLog":
        """上下文管理器入口：返回 self。"""

        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        """上下文管理器退出：确保关闭文件句柄。"""

        self.close()


def iter_jsonl_events(path: Union[str, Path]) -> Iterator[BuildEvent]:
    """
    逐行读取 JSONL 并反序列化为 `BuildEvent`（跳过空行）。

    异常：
    - FileNotFoundError：文件不存在
    - OSError：文件无法读取（例如路径是目录）
    - EventStreamError：某一行不是合法 UTF-8 或不是合法的 BuildEvent（details 中带 1-based 行号）
    """

    p = Path(path)
    with p.open("rb") as f:
        for lineno, raw_line in enumerate(f, start=1):
            try:
                line = raw_line.decode("utf-8").strip()
            except UnicodeDecodeError as exc:
                raise EventStreamError(
                    "Build event line is not valid UTF-8.",
                    details={"path": str(p), "line": lineno, "reason": str(exc)},
                ) from exc
            if not line:
                continue
            try:
                event = BuildEvent.from_json(line)
            except ValidationError as exc:
                raise EventStreamError(
                    "Invalid build event line.",
                    details={"path": str(p), "line": lineno, "reason": str(exc)},
                ) from exc
            yield event


class ReplayClock:
    """由事件 timestamp 推进的毫秒时钟（供 MetricStore 注入）。"""

    def __init__(self, now_ms: int = 0) -> None:
        self.now_ms = now_ms

    def advance_to(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def replay_events(
    events: Iterable[BuildEvent],
    *,
    output_path: Union[str, Path],
    shards: int = 16,
    include_outcome: bool = False,
    indent: Optional[int] = None,
) -> BuildEventListener:
    """
    将事件流回放进一个新的会话 listener，并返回它（尚未写报告）。

    说明：
    - 会话开始时刻取第一条带 timestamp 的事件；没有 timestamp 的事件沿用上一时刻；
    - `session_ended` 不在回放中触发落盘，由调用方决定何时 `persist`（以便拿到错误）。

    异常：
    - EventStreamError：timestamp 无法解析
    """

    items = list(events)
    clock = ReplayClock()
    for ev in items:
        if ev.timestamp:
            clock.advance_to(_event_ms(ev))
            break

    store = MetricStore(clock=clock, shards=shards, include_outcome=include_outcome, indent=indent)
    listener = BuildEventListener(output_path, store=store)
    for ev in items:
        if ev.timestamp:
            clock.advance_to(_event_ms(ev))
        if ev.type == "session_ended":
            continue
        listener.handle(ev)
    return listener


def _event_ms(event: BuildEvent) -> int:
    try:
        return parse_timestamp_ms(str(event.timestamp))
    except ValueError as exc:
        raise EventStreamError(
            "Invalid event timestamp.",
            details={"timestamp": event.timestamp, "reason": str(exc)},
        ) from exc
