from __future__ import annotations

from ._version import __version__
from .account import RateAccount, accrue_step
from .backends import InMemoryBackend, RateBankBackend
from .errors import RateBankError, RateLimitExceeded
from .limiter import RateBank
from .params import RateParams

__all__ = (
    "InMemoryBackend",
    "RateAccount",
    "RateBank",
    "RateBankBackend",
    "RateBankError",
    "RateLimitExceeded",
    "RateParams",
    "__version__",
    "accrue_step",
)
