"""Per-participant keyed stores.

Every piece of conversational state is keyed by participant id. Gates and
schedulers take a store at construction and default to a fresh MemoryStore.
"""

from abc import ABC, abstractmethod
from typing import Dict, Generic, Iterator, Optional, Tuple, TypeVar

V = TypeVar("V")


class KeyValueStore(ABC, Generic[V]):
    @abstractmethod
    def get(self, key: str) -> Optional[V]:
        pass

    @abstractmethod
    def set(self, key: str, value: V) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, V]]:
        pass

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryStore(KeyValueStore[V]):
    """Process-local store; contents are lost on restart."""

    def __init__(self, initial: Optional[Dict[str, V]] = None):
        self._data: Dict[str, V] = dict(initial or {})

    def get(self, key: str) -> Optional[V]:
        return self._data.get(key)

    def set(self, key: str, value: V) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> Iterator[Tuple[str, V]]:
        return iter(list(self._data.items()))

    def __len__(self) -> int:
        return len(self._data)
