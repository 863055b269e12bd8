"""Bounded execution of blocking provider SDK calls."""

from __future__ import annotations

import asyncio
from typing import Callable, TypeVar

T = TypeVar("T")


class CallGate:
    """Run blocking calls in worker threads behind a semaphore and a timeout.

    One gate is shared by every outbound generative and embedding call so a
    burst of conversations cannot open an unbounded number of requests.
    """

    def __init__(self, max_concurrency: int = 8, timeout: float = 30.0) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.timeout = timeout

    async def run(self, func: Callable[..., T], *args: object) -> T:
        async with self._semaphore:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)


__all__ = ["CallGate"]
