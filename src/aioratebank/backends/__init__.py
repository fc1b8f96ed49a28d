from .base import RateBankBackend
from .memory import InMemoryBackend

__all__ = ("InMemoryBackend", "RateBankBackend")
