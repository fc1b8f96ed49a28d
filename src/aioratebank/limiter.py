import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from contextlib import asynccontextmanager
from typing import Final

from .backends import RateBankBackend
from .errors import RateLimitExceeded
from .params import RateParams

__all__ = ("RateBank",)

logger = logging.getLogger(__name__)

GLOBAL_KEY: Final = "_global"


class RateBank:
    """
    Async admission control built on the bank-account model.

    Example:

        params = RateParams(accrual_rate=1000.0, max_balance=5000.0,
                            min_balance=-5000.0)  # 1000 bytes/sec
        bank = RateBank(params, backend=InMemoryBackend())

        async with bank.resource("group:42", debit=len(packet)):
            await send_packet(packet)
    """

    # Alias so one can write RateBank.Params(...)
    Params: type[RateParams] = RateParams

    def __init__(
        self,
        params: RateParams,
        *,
        backend: RateBankBackend,
    ) -> None:
        self._params: Final = params
        self._backend: Final = backend

    @property
    def params(self) -> RateParams:
        return self._params

    @property
    def backend(self) -> RateBankBackend:
        return self._backend

    async def update(self, key: Hashable | None = None, debit: float = 0.0) -> float:
        """Accrue and deduct `debit` unconditionally, return new balance."""
        return await self._backend.update(
            _key(key), _now(), self._params, debit
        )

    async def balance(self, key: Hashable | None = None) -> float:
        return await self.update(key, 0.0)

    async def admit(
        self,
        key: Hashable | None = None,
        debit: float = 1.0,
        *,
        threshold: float = 0.0,
    ) -> bool:
        """
        Deduct `debit` if the balance stays >= `threshold` afterwards.

        A rejected call still accrues but is not charged.
        """
        admitted, balance = await self._backend.try_debit(
            _key(key), _now(), self._params, debit, threshold
        )
        if not admitted:
            logger.debug(
                "Rejected debit %s for %r, balance %s", debit, _key(key), balance
            )
        return admitted

    @asynccontextmanager
    async def resource(
        self,
        key: Hashable | None = None,
        debit: float = 1.0,
        *,
        threshold: float = 0.0,
        wait: bool = True,
    ) -> AsyncIterator[None]:
        """
        Context manager that enforces the limit.

        key=None — global account (single key for whole bank).
        wait     — sleep until enough credit has accrued instead of raising
                   RateLimitExceeded.
        """
        key = _key(key)
        while True:
            admitted, balance = await self._backend.try_debit(
                key, _now(), self._params, debit, threshold
            )
            if admitted:
                break
            rate = self._params.accrual_rate
            # above the ceiling the debit would never fit
            reachable = threshold + debit <= self._params.max_balance
            if not wait or rate <= 0 or not reachable:
                raise RateLimitExceeded(key, balance, debit)
            delay = (threshold + debit - balance) / rate
            logger.debug("Waiting %.3fs for credit on %r", delay, key)
            await asyncio.sleep(delay)
        yield

    async def clear(self) -> None:
        """
        Reset backend state if supported.
        For InMemoryBackend — clears data.
        """
        clear_obj: Callable[[], Awaitable[object] | object] | None = getattr(
            self._backend,
            "clear",
            None,
        )
        if clear_obj is None:
            return

        result = clear_obj()
        if inspect.isawaitable(result):
            await result


def _key(key: Hashable | None) -> Hashable:
    return GLOBAL_KEY if key is None else key


def _now() -> float:
    return asyncio.get_running_loop().time()
