# File: civicwatch/services/locks.py
from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Optional


class IssueLocks:
    """Per-issue mutual exclusion for score, status, link and upvote mutations."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._users: dict[int, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, issue_id: int) -> AsyncIterator[None]:
        self._users[issue_id] += 1
        lock = self._locks[issue_id]
        try:
            async with lock:
                yield
        finally:
            self._users[issue_id] -= 1
            if self._users[issue_id] == 0:
                del self._users[issue_id]
                self._locks.pop(issue_id, None)

    @asynccontextmanager
    async def hold_many(self, *issue_ids: Optional[int]) -> AsyncIterator[None]:
        """Hold several issues at once; always acquired in ascending id order."""
        async with AsyncExitStack() as stack:
            for issue_id in sorted({i for i in issue_ids if i is not None}):
                await stack.enter_async_context(self.hold(issue_id))
            yield

    def __len__(self) -> int:
        return len(self._locks)
