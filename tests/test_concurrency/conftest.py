"""
Concurrency Test Fixtures

Provides helpers for running many uploads at once and controlling
when each of them finishes.
"""
import asyncio
import pytest
from typing import Any, Coroutine, Dict, List


@pytest.fixture
def run_concurrent():
    """
    Helper fixture to run multiple async tasks concurrently.

    Usage:
        results = await run_concurrent([task1(), task2(), task3()])

    Returns list of results or exceptions for each task.
    """
    async def _run_concurrent(
        tasks: List[Coroutine],
        timeout: float = 10.0
    ) -> List[Any]:
        return await asyncio.wait_for(
            asyncio.gather(*tasks, return_exceptions=True),
            timeout=timeout
        )
    return _run_concurrent


class GatedUploader:
    """
    ClipUploader stand-in whose uploads block until released.

    Each upload waits on a per-key gate so tests can finish uploads
    one at a time and observe the pending count in between.
    """

    def __init__(self):
        self.started: List[str] = []
        self.finished: List[str] = []
        self._gates: Dict[str, asyncio.Event] = {}

    def _gate(self, object_key: str) -> asyncio.Event:
        return self._gates.setdefault(object_key, asyncio.Event())

    async def upload(self, source_url: str, object_key: str) -> None:
        self.started.append(object_key)
        await self._gate(object_key).wait()
        self.finished.append(object_key)

    def release(self, object_key: str) -> None:
        self._gate(object_key).set()

    def release_all(self) -> None:
        for key in self.started:
            self.release(key)


@pytest.fixture
def gated_uploader():
    return GatedUploader()
