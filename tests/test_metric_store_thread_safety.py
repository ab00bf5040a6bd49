import threading

from build_events.core.step_key import StepKey
from build_events.metrics.store import MetricStore


def test_concurrent_start_end_pairs_no_data_loss() -> None:
    store = MetricStore(shards=4)
    n_threads, n_per_thread = 8, 200
    barrier = threading.Barrier(n_threads)

    def worker(tid: int) -> None:
        barrier.wait()
        for i in range(n_per_thread):
            key = StepKey(group_id="g", artifact_id=f"a{tid}", phase="p", goal="goal", execution_id=str(i))
            store.record_start(key, thread_id=tid, now_millis=i)
            store.record_end(key, now_millis=i + 1)

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(n_threads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snap = store.snapshot()
    assert len(snap) == n_threads * n_per_thread
    assert all(r.end == r.start + 1 for r in snap)
    assert {r.thread_id for r in snap} == set(range(n_threads))


def test_snapshot_while_writers_are_running_does_not_raise() -> None:
    store = MetricStore(shards=2)
    stop = threading.Event()
    sizes: list[int] = []

    def writer(tid: int) -> None:
        i = 0
        while not stop.is_set() and i < 5_000:
            key = StepKey(group_id="g", artifact_id=f"a{tid}", phase="p", goal="goal", execution_id=str(i))
            store.record_start(key, thread_id=tid)
            store.record_end(key)
            i += 1

    def reader() -> None:
        for _ in range(200):
            sizes.append(len(store.snapshot()))
            store.render()

    writers = [threading.Thread(target=writer, args=(t,)) for t in range(4)]
    r = threading.Thread(target=reader)
    for t in writers:
        t.start()
    r.start()
    r.join()
    stop.set()
    for t in writers:
        t.join()

    assert len(sizes) == 200
    assert len(store) <= 4 * 5_000


def test_concurrent_restart_of_same_key_keeps_single_record() -> None:
    store = MetricStore()
    key = StepKey(group_id="g", artifact_id="a", phase="p", goal="goal", execution_id="default")

    def starter(tid: int) -> None:
        for i in range(100):
            store.record_start(key, thread_id=tid, now_millis=i)

    threads = [threading.Thread(target=starter, args=(t,)) for t in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snap = store.snapshot()
    assert len(snap) == 1
    assert snap[0].thread_id in {0, 1, 2, 3}
