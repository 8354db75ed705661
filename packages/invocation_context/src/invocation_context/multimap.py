from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class MultiMap(Generic[K, V]):
    """
    Ordered multimap: each key holds a list of values in insertion order.

    Keys keep the order in which they were first added. `get` always returns a
    fresh list so callers cannot reach into the map's storage.
    """

    def __init__(self, initial: Mapping[K, Iterable[V]] | MultiMap[K, V] | None = None) -> None:
        self._data: dict[K, list[V]] = {}
        if initial is not None:
            self.put_all(initial)

    def put(self, key: K, value: V) -> None:
        self._data.setdefault(key, []).append(value)

    def put_all(self, other: Mapping[K, Iterable[V]] | MultiMap[K, V]) -> None:
        items = other.entries() if isinstance(other, MultiMap) else other.items()
        for key, values in items:
            if isinstance(values, (str, bytes)):
                self.put(key, values)  # type: ignore[arg-type]
                continue
            for value in values:
                self.put(key, value)

    def get(self, key: K) -> list[V]:
        return list(self._data.get(key, ()))

    def remove(self, key: K) -> list[V]:
        return self._data.pop(key, [])

    def contains_key(self, key: K) -> bool:
        return key in self._data

    def keys(self) -> list[K]:
        return list(self._data)

    def values(self) -> list[V]:
        return [value for values in self._data.values() for value in values]

    def entries(self) -> list[tuple[K, list[V]]]:
        return [(key, list(values)) for key, values in self._data.items()]

    def size(self) -> int:
        return len(self._data)

    def is_empty(self) -> bool:
        return not self._data

    def copy(self) -> MultiMap[K, V]:
        out: MultiMap[K, V] = type(self)()
        out._data = {key: list(values) for key, values in self._data.items()}
        return out

    def to_dict(self) -> dict[K, list[V]]:
        return {key: list(values) for key, values in self._data.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiMap):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"


class UniqueMultiMap(MultiMap[K, V]):
    """MultiMap that silently keeps only the first occurrence of a value under a key."""

    def put(self, key: K, value: V) -> None:
        values = self._data.setdefault(key, [])
        if value not in values:
            values.append(value)
