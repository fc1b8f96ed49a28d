from __future__ import annotations

# pyright: reportPrivateUsage=false
import asyncio
import contextlib
import logging
from collections.abc import Hashable

from aioratebank.account import accrue_step
from aioratebank.params import RateParams

__all__ = ("InMemoryBackend",)

logger = logging.getLogger(__name__)


class InMemoryBackend:
    """
    In-process backend: single event loop / single process.

    For each key keeps:
      * _balance[key]     — current balance
      * _last_update[key] — time of the last accrual step
      * _locks[key]       — asyncio.Lock to serialize key traffic

    Keys appear on first use with `preload` as balance and disappear
    after `idle_ttl` seconds without traffic.
    """

    def __init__(
        self,
        preload: float = 0.0,
        *,
        idle_ttl: float | None = None,
        sweeper_interval: float | None = None,
    ) -> None:
        if idle_ttl is not None and idle_ttl <= 0:
            msg = "idle_ttl must be positive or None"
            raise ValueError(msg)
        if sweeper_interval is not None and sweeper_interval <= 0:
            msg = "sweeper_interval must be positive or None"
            raise ValueError(msg)
        self._preload: float = float(preload)
        self._balance: dict[Hashable, float] = {}
        self._last_update: dict[Hashable, float] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._idle_ttl: float | None = idle_ttl
        self._sweeper_interval: float | None = sweeper_interval
        self._sweeper_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._balance)

    def __contains__(self, key: object) -> bool:
        return key in self._balance

    async def update(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
    ) -> float:
        async with self._lock_for(key, now):
            balance = self._step(key, now, params, debit)
            self._balance[key] = balance
            return balance

    async def try_debit(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
        threshold: float,
    ) -> tuple[bool, float]:
        async with self._lock_for(key, now):
            balance = self._step(key, now, params, 0.0)
            admitted = balance - debit >= threshold
            if admitted:
                # zero elapsed time: only the debit and the clamp apply
                balance = accrue_step(balance, now, now, params, debit)
            self._balance[key] = balance
            return admitted, balance

    async def clear(self) -> None:
        """Reset state (handy in tests or manual reset)."""
        self._balance.clear()
        self._last_update.clear()
        self._locks.clear()
        if self._sweeper_task is not None:
            _ = self._sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper_task
            self._sweeper_task = None

    def _lock_for(self, key: Hashable, now: float) -> asyncio.Lock:
        if self._idle_ttl is not None:
            self._cleanup_expired(now)
        self._ensure_sweeper()

        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _step(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
    ) -> float:
        balance = self._balance.get(key)
        last_update = self._last_update.get(key)
        if balance is None or last_update is None:
            balance, last_update = self._preload, now
        self._last_update[key] = now
        return accrue_step(balance, last_update, now, params, debit)

    def _cleanup_expired(self, now: float) -> None:
        ttl = self._idle_ttl
        if ttl is None:
            return
        expiry_threshold = now - ttl
        for key in list(self._balance):
            last_update = self._last_update.get(key)
            if last_update is None or last_update > expiry_threshold:
                continue
            lock = self._locks.get(key)
            if lock is not None and lock.locked():
                continue
            _ = self._balance.pop(key, None)
            _ = self._last_update.pop(key, None)
            _ = self._locks.pop(key, None)
            logger.debug("Evicted idle account %r", key)

    def _ensure_sweeper(self) -> None:
        interval = self._sweeper_interval
        if interval is None:
            return
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return
        loop = asyncio.get_running_loop()
        self._sweeper_task = loop.create_task(self._sweep_periodically(interval))

    async def _sweep_periodically(self, interval: float) -> None:
        try:
            while True:
                await asyncio.sleep(interval)
                now = asyncio.get_running_loop().time()
                self._cleanup_expired(now)
        except asyncio.CancelledError:  # pragma: no cover - lifecycle cleanup
            raise
