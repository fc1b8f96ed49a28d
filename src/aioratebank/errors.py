from __future__ import annotations

from collections.abc import Hashable

__all__ = ("RateBankError", "RateLimitExceeded")


class RateBankError(Exception):
    """Base class for aioratebank errors."""


class RateLimitExceeded(RateBankError):
    def __init__(self, key: Hashable, balance: float, debit: float) -> None:
        self.key = key
        self.balance = balance
        self.debit = debit
        super().__init__(
            f"debit {debit} not admissible for {key!r} (balance {balance})"
        )
