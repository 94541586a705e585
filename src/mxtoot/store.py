"""Scoped persistence for bot state and processed transactions."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import AccountState


class AccountUnitOfWork:
    """Reads and writes of one account inside a single transaction."""

    def __init__(self, session: AsyncSession, account_id: str):
        self.session = session
        self.account_id = account_id
        self._state: AccountState | None = None

    async def state(self) -> AccountState:
        """Load the account's state row, creating it if missing."""
        if self._state is None:
            result = await self.session.execute(
                select(AccountState).where(AccountState.account_id == self.account_id)
            )
            state = result.scalar_one_or_none()
            if state is None:
                state = AccountState(
                    account_id=self.account_id,
                    running=False,
                    delivered_count=0,
                    failed_count=0,
                )
                self.session.add(state)
            self._state = state
        return self._state


class PersistenceStore:
    """Transactional access to the bridge database.

    Units of work on the same key are serialised with an ``asyncio.Lock``;
    different keys proceed concurrently.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, key: str) -> asyncio.Lock:
        return self._locks[key]

    def discard_lock(self, key: str) -> None:
        """Forget an idle lock of a short-lived key."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    @asynccontextmanager
    async def session_scope(self, key: str) -> AsyncIterator[AsyncSession]:
        """Open a session in a transaction, serialised on ``key``.

        Commits when the block succeeds and rolls back when it raises.
        """
        async with self.lock_for(key):
            async with self.session_maker() as session:
                async with session.begin():
                    yield session

    @asynccontextmanager
    async def unit_of_work(self, account_id: str) -> AsyncIterator[AccountUnitOfWork]:
        """Scoped unit of work for one account.

        Holds the account lock for the whole block; keep network calls
        outside it.
        """
        async with self.session_scope(f"account:{account_id}") as session:
            yield AccountUnitOfWork(session, account_id)

    async def get_state(self, account_id: str) -> AccountState | None:
        """Read an account's state outside any unit of work."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(AccountState).where(AccountState.account_id == account_id)
            )
            return result.scalar_one_or_none()

    async def set_running(self, account_id: str, running: bool) -> None:
        async with self.unit_of_work(account_id) as uow:
            state = await uow.state()
            state.running = running
