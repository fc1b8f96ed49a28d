from __future__ import annotations

import time
from collections.abc import Callable

from .errors import RateBankError
from .params import RateParams

__all__ = ("RateAccount", "accrue_step")


def accrue_step(
    balance: float,
    last_update: float,
    now: float,
    params: RateParams,
    debit: float = 0.0,
) -> float:
    """
    Single bank-account step.

    Input:
      * balance     — balance after the previous step
      * last_update — time of the previous step (same units as now)
      * now         — current time
      * params      — rate and clamp bounds in effect
      * debit       — amount to deduct, 0.0 to just accrue

    Output:
      * new balance, clamped into [min_balance, max_balance]

    Elapsed time is not checked: a clock going backwards drains credit.
    """
    raw = balance + params.accrual_rate * (now - last_update) - debit
    return max(params.min_balance, min(params.max_balance, raw))


class RateAccount:
    """
    Balance of one rate-limited entity (a multicast group, a peer...).

    Credit accrues at ``accrual_rate`` per second and every admitted unit
    of work is debited. Debt is allowed down to ``min_balance``, savings
    are capped at ``max_balance``, so bursty senders can spend what they
    saved while the long-run average stays bounded.

    Example:

        params = RateParams(accrual_rate=1000.0, max_balance=5000.0,
                            min_balance=-5000.0)
        account = RateAccount(0.0)
        if account.update(params, len(packet)) >= 0.0:
            send(packet)

    Not synchronized: share an account between threads or tasks only
    behind your own lock.
    """

    __slots__ = ("_balance", "_clock", "_last_update")

    def __init__(
        self,
        preload: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        preload — initial balance; None leaves the account uninitialized
                  and init() must be called before update().
        clock   — time source in seconds, monotonic by default.
        """
        self._clock = clock
        self._balance: float | None = None
        self._last_update: float | None = None
        if preload is not None:
            self.init(preload)

    @property
    def initialized(self) -> bool:
        return self._balance is not None

    @property
    def balance(self) -> float:
        if self._balance is None:
            raise RateBankError("RateAccount is not initialized")
        return self._balance

    @property
    def last_update(self) -> float:
        if self._last_update is None:
            raise RateBankError("RateAccount is not initialized")
        return self._last_update

    def init(self, preload: float) -> None:
        """(Re)initialize with ``preload`` as balance, taken as is."""
        self._last_update = self._clock()
        self._balance = preload

    def update(self, params: RateParams, debit: float = 0.0) -> float:
        """Accrue since the last call, deduct ``debit``, return new balance."""
        if self._balance is None or self._last_update is None:
            raise RateBankError("RateAccount.init() must be called first")

        start = self._last_update
        now = self._last_update = self._clock()
        self._balance = accrue_step(self._balance, start, now, params, debit)
        return self._balance

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(balance={self._balance!r}, "
            f"last_update={self._last_update!r})"
        )
