from __future__ import annotations

from collections import OrderedDict
from typing import Generic, TypeVar

KeyT = TypeVar("KeyT")


class EpochCache(Generic[KeyT]):
    """
    Bounded LRU map of key to the highest epoch observed for it.
    Recording a lower epoch never lowers the stored value.
    """

    __slots__ = ("_max_size", "_cache")

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self._max_size = max_size
        self._cache: OrderedDict[KeyT, int] = OrderedDict()

    def get(self, key: KeyT, default: int = 0) -> int:
        if key not in self._cache:
            return default

        self._cache.move_to_end(key)
        return self._cache[key]

    def observe(self, key: KeyT, epoch: int) -> int:
        if key in self._cache:
            self._cache.move_to_end(key)
            epoch = max(epoch, self._cache[key])
            self._cache[key] = epoch
            return epoch

        if len(self._cache) >= self._max_size:
            self._cache.popitem(last=False)

        self._cache[key] = epoch
        return epoch

    def remove(self, key: KeyT) -> int | None:
        return self._cache.pop(key, None)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: KeyT) -> bool:
        return key in self._cache

    @property
    def max_size(self) -> int:
        return self._max_size
