from __future__ import annotations

from collections.abc import Hashable
from typing import Protocol, runtime_checkable

from aioratebank.params import RateParams

__all__ = ("RateBankBackend",)


@runtime_checkable
class RateBankBackend(Protocol):
    async def update(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
    ) -> float:
        """
        Apply one accrual step to the account of `key` at moment `now`.

        Must:
          * create the account on first sight (preload balance, now),
          * accrue, deduct `debit` and clamp,
          * store and return the new balance.
        """
        ...

    async def try_debit(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
        threshold: float,
    ) -> tuple[bool, float]:
        """
        Accrue, then deduct `debit` only if the balance stays >= `threshold`.

        Both steps must be atomic per key. Returns (admitted, balance).
        """
        ...
