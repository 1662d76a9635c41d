import json
from typing import Any, Dict, List

import pytest


class FakeConnection:
    """In-memory stand-in for ConnectionHandle."""

    def __init__(self, label: str) -> None:
        self.label = label
        self.answered = True
        self.sent: List[str] = []
        self.pings = 0
        self.open = True
        self.fail_sends = False

    def __repr__(self) -> str:
        return f"<FakeConnection {self.label}>"

    @property
    def is_open(self) -> bool:
        return self.open

    def mark_alive(self) -> None:
        self.answered = True

    async def send(self, text: str) -> bool:
        if not self.open or self.fail_sends:
            return False
        self.sent.append(text)
        return True

    async def ping(self) -> bool:
        self.pings += 1
        return self.open

    async def close(self) -> None:
        self.open = False

    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages()]


@pytest.fixture
def make_conn():
    def _make(label: str = "conn") -> FakeConnection:
        return FakeConnection(label)

    return _make
