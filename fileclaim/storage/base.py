from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    chunks: Iterator[bytes]


class ObjectStore(ABC):
    @abstractmethod
    def open(self, key: str) -> StoredObject | None:
        """Open an object for streaming; None if the key does not exist."""
        raise NotImplementedError

    @abstractmethod
    def exists(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list(self, prefix: str = "", limit: int = 1000) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, content: bytes) -> str:
        """Save content under key; returns the key."""
        raise NotImplementedError
