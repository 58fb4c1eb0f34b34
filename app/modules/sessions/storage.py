from abc import ABC, abstractmethod
from typing import Dict, Optional

LOGIN_TIMESTAMP_KEY = "login_timestamp"


def login_timestamp_slot(session_id: str) -> str:
    return f"{LOGIN_TIMESTAMP_KEY}:{session_id}"


class SessionStorage(ABC):
    """Session-local key-value slots that outlive the in-memory session object."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemorySessionStorage(SessionStorage):
    def __init__(self):
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)
