from __future__ import annotations

import threading
from pathlib import Path

import pytest

from build_events.core.contracts import BuildEvent
from build_events.core.errors import EventStreamError
from build_events.listener import BuildEventListener
from build_events.metrics.store import MetricStore
from build_events.state.jsonl_events import (
    JsonlEventLog,
    ReplayClock,
    iter_jsonl_events,
    parse_timestamp_ms,
    replay_events,
)


def _ev(type_: str, ts: str, execution_id: str = "default-compile", **extra) -> BuildEvent:  # type: ignore[no-untyped-def]
    return BuildEvent(
        type=type_,
        timestamp=ts,
        group_id="com.example",
        artifact_id="app",
        phase="compile",
        goal="compile",
        execution_id=execution_id,
        **extra,
    )


def test_parse_timestamp_ms_handles_z_and_fraction() -> None:
    base = parse_timestamp_ms("2026-02-09T00:00:00Z")
    assert parse_timestamp_ms("2026-02-09T00:00:00.250Z") - base == 250
    assert parse_timestamp_ms("2026-02-09T01:00:00+01:00") == base


def test_event_log_append_returns_line_index_and_reopens(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    with JsonlEventLog(path=path) as log:
        assert log.append(_ev("step_started", "2026-02-09T00:00:00Z", thread_id=1)) == 0
        assert log.append(_ev("step_succeeded", "2026-02-09T00:00:01Z")) == 1

    log2 = JsonlEventLog(path=path)
    assert log2.append(_ev("session_ended", "2026-02-09T00:00:02Z")) == 2
    log2.close()

    events = list(iter_jsonl_events(path))
    assert [e.type for e in events] == ["step_started", "step_succeeded", "session_ended"]
    assert events[0].thread_id == 1


def test_event_log_concurrent_append_no_data_loss(tmp_path: Path) -> None:
    log = JsonlEventLog(path=tmp_path / "events.jsonl")
    n_threads, n_per_thread = 4, 50

    def writer(tid: int) -> None:
        for i in range(n_per_thread):
            log.append(_ev("step_started", "2026-02-09T00:00:00Z", execution_id=f"{tid}-{i}", thread_id=tid))

    threads = [threading.Thread(target=writer, args=(t,)) for t in range(n_threads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    log.close()

    assert len(list(log.iter_events())) == n_threads * n_per_thread


def test_iter_jsonl_events_reports_bad_line_number(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text(
        _ev("step_started", "2026-02-09T00:00:00Z").to_json() + "\n\n{bad json}\n",
        encoding="utf-8",
    )
    with pytest.raises(EventStreamError) as ei:
        list(iter_jsonl_events(path))
    assert ei.value.details["line"] == 3


def test_replay_clock_is_callable() -> None:
    clock = ReplayClock(5)
    clock.advance_to(42)
    assert clock() == 42


def test_replay_events_uses_event_timestamps_as_offsets(tmp_path: Path) -> None:
    events = [
        BuildEvent(type="session_started", timestamp="2026-02-09T00:00:00Z"),
        _ev("step_started", "2026-02-09T00:00:00.012Z", thread_id=1),
        _ev("step_started", "2026-02-09T00:00:00.020Z", execution_id="default-testCompile", thread_id=2),
        _ev("step_succeeded", "2026-02-09T00:00:00.340Z"),
        _ev("session_ended", "2026-02-09T00:00:01Z"),
    ]
    listener = replay_events(events, output_path=tmp_path / "out.json")

    by_id = {r.key.execution_id: r for r in listener.store.snapshot()}
    assert (by_id["default-compile"].start, by_id["default-compile"].end) == (12, 340)
    assert by_id["default-testCompile"].end is None
    assert by_id["default-testCompile"].thread_id == 2
    assert not (tmp_path / "out.json").exists()


def test_replay_events_rejects_bad_timestamp(tmp_path: Path) -> None:
    with pytest.raises(EventStreamError):
        replay_events([_ev("step_started", "yesterday")], output_path=tmp_path / "out.json")


def test_iter_jsonl_events_rejects_invalid_utf8_with_line_number(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_bytes(
        (_ev("step_started", "2026-02-09T00:00:00Z").to_json() + "\n").encode("utf-8")
        + b'{"type":"step_started","group_id":"\xff"}\n'
    )
    with pytest.raises(EventStreamError) as ei:
        list(iter_jsonl_events(path))
    assert ei.value.code == "EVENT_STREAM_INVALID"
    assert ei.value.details["line"] == 2


def test_event_log_truncate_clears_previous_session(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    with JsonlEventLog(path=path) as log:
        log.append(_ev("step_started", "2026-02-09T00:00:00Z", thread_id=1))

    with JsonlEventLog(path=path, truncate=True) as log:
        assert log.append(_ev("step_succeeded", "2026-02-09T00:00:01Z")) == 0

    assert [e.type for e in iter_jsonl_events(path)] == ["step_succeeded"]


class _FakeClock:
    def __init__(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def test_captured_session_replays_into_identical_report(tmp_path: Path) -> None:
    base = parse_timestamp_ms("2026-02-09T00:00:00Z")
    clock = _FakeClock(base)
    capture = tmp_path / "capture" / "events.jsonl"
    live = BuildEventListener(
        tmp_path / "live.json",
        store=MetricStore(clock=clock),
        event_log=JsonlEventLog(path=capture, truncate=True),
    )

    def step(type_: str, execution_id: str, **extra) -> BuildEvent:  # type: ignore[no-untyped-def]
        return BuildEvent(
            type=type_,
            group_id="com.example",
            artifact_id="app",
            phase="compile",
            goal="compile",
            execution_id=execution_id,
            **extra,
        )

    clock.now_ms = base + 12
    live.handle(step("step_started", "default-compile"))
    clock.now_ms = base + 15
    live.handle(step("step_started", "extra", thread_id=7))
    clock.now_ms = base + 340
    live.handle(step("step_failed", "default-compile"))
    clock.now_ms = base + 1000
    live.handle(BuildEvent(type="session_ended"))

    captured = list(iter_jsonl_events(capture))
    assert [e.type for e in captured] == [
        "session_started",
        "step_started",
        "step_started",
        "step_failed",
        "session_ended",
    ]
    assert all(e.timestamp for e in captured)
    assert captured[1].thread_id == threading.get_ident()

    replayed = replay_events(captured, output_path=tmp_path / "replay.json")
    written = replayed.store.persist(replayed.output_path)

    live_text = (tmp_path / "live.json").read_text(encoding="utf-8")
    assert written.read_text(encoding="utf-8") == live_text
    by_id = {r.key.execution_id: r for r in replayed.store.snapshot()}
    assert (by_id["default-compile"].start, by_id["default-compile"].end) == (12, 340)
    assert by_id["extra"].thread_id == 7
