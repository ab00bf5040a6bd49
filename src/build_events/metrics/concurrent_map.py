"""
分片并发 map（每个 shard 一把锁）。

约束：
- 同一 key 的 put/get/update 只持有其所在 shard 的锁，不同 shard 之间互不阻塞；
- `values()` 逐个 shard 在锁内拷贝，得到弱一致快照（不会因并发修改抛异常）。
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Generic, Hashable, List, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ShardedMap(Generic[K, V]):
    """线程安全的分片 dict。"""

    def __init__(self, shards: int = 16) -> None:
        """
        参数：
        - shards：分片数量（>=1）
        """

        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards: List[Dict[K, V]] = [{} for _ in range(shards)]
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(shards)]

    def _index(self, key: K) -> int:
        """返回 key 所在 shard 的下标。"""

        return hash(key) % len(self._shards)

    def put(self, key: K, value: V) -> None:
        """插入或覆盖（后写者胜）。"""

        i = self._index(key)
        with self._locks[i]:
            self._shards[i][key] = value

    def get(self, key: K) -> Optional[V]:
        """读取 key 对应的 value；不存在时返回 None。"""

        i = self._index(key)
        with self._locks[i]:
            return self._shards[i].get(key)

    def update(self, key: K, fn: Callable[[V], None]) -> bool:
        """
        在 shard 锁内对已存在的 value 调用 `fn`。

        返回：
        - bool：key 存在且已更新时为 True；key 不存在时为 False（不插入）
        """

        i = self._index(key)
        with self._locks[i]:
            value = self._shards[i].get(key)
            if value is None:
                return False
            fn(value)
            return True

    def values(self) -> List[V]:
        """逐 shard 在锁内拷贝全部 value（弱一致快照，顺序不保证）。"""

        out: List[V] = []
        for shard, lock in zip(self._shards, self._locks):
            with lock:
                out.extend(shard.values())
        return out

    def __len__(self) -> int:
        """各 shard 条目数之和。"""

        total = 0
        for shard, lock in zip(self._shards, self._locks):
            with lock:
                total += len(shard)
        return total
