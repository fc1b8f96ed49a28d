from __future__ import annotations

from collections.abc import AsyncIterator, Hashable
from textwrap import dedent as ddent
from typing import Final, Protocol

from ..params import RateParams

__all__ = ("BANK_LUA", "RedisBackend", "RedisClientProtocol", "ScriptProtocol")


# Minimal surface of redis.asyncio we rely on, so type checkers stay
# happy even if external redis stubs are absent.
class ScriptProtocol(Protocol):
    async def __call__(
        self, *, keys: list[str], args: list[float | str]
    ) -> list[object]: ...


class RedisClientProtocol(Protocol):
    def register_script(self, script: str) -> ScriptProtocol: ...
    def scan_iter(self, *, match: str = "*") -> AsyncIterator[str]: ...
    async def delete(self, *names: str | bytes | memoryview) -> object: ...


# Lua script: one bank-account step + TTL handling (atomic on Redis).
#
# KEYS[1]  = hash holding {balance, ts}
# ARGV[1]  = accrual_rate
# ARGV[2]  = max_balance
# ARGV[3]  = min_balance
# ARGV[4]  = debit
# ARGV[5]  = threshold, or "" to debit unconditionally
# ARGV[6]  = preload for a fresh key
# ARGV[7]  = extra_ttl (seconds)
#
# Returns {admitted (0/1), balance as string}.
BANK_LUA: Final[str] = ddent(
    r"""
    redis.replicate_commands()

    local key = KEYS[1]
    local rate = tonumber(ARGV[1])
    local max_balance = tonumber(ARGV[2])
    local min_balance = tonumber(ARGV[3])
    local debit = tonumber(ARGV[4])
    local threshold = tonumber(ARGV[5])
    local preload = tonumber(ARGV[6])
    local extra_ttl = tonumber(ARGV[7])

    -- Current time from Redis server: seconds + microseconds
    local now_time = redis.call("TIME")
    local now = tonumber(now_time[1]) + tonumber(now_time[2]) / 1000000.0

    local state = redis.call("HMGET", key, "balance", "ts")
    local balance = tonumber(state[1])
    local ts = tonumber(state[2])
    if balance == nil or ts == nil then
      balance = preload
      ts = now
    end

    local function clamp(value)
      return math.max(min_balance, math.min(max_balance, value))
    end

    local admitted = 1
    if threshold == nil then
      -- single clamp over accrual and debit together
      balance = clamp(balance + rate * (now - ts) - debit)
    else
      balance = clamp(balance + rate * (now - ts))
      if balance - debit < threshold then
        admitted = 0
      else
        balance = clamp(balance - debit)
      end
    end

    -- %.17g: tostring() keeps only 14 digits, too few for epoch seconds
    local function fmt(value)
      return string.format("%.17g", value)
    end

    redis.call("HSET", key, "balance", fmt(balance), "ts", fmt(now))

    -- TTL: keep key until the account has refilled, plus small buffer
    if rate > 0 then
      local ttl = (max_balance - balance) / rate + extra_ttl
      if ttl < 1.0 then
        ttl = 1.0
      end
      redis.call("EXPIRE", key, math.ceil(ttl))
    else
      redis.call("PERSIST", key)
    end

    return {admitted, fmt(balance)}
    """
)


class RedisBackend:
    """
    Redis backend for RateBank.

    The accrual step runs in a Lua script on Redis, using server time
    (TIME) so multiple hosts share a clock. Python side only passes
    parameters and parses the resulting balance.
    """

    def __init__(
        self,
        redis: RedisClientProtocol,
        *,
        prefix: str = "ratebank:",
        preload: float = 0.0,
        extra_ttl: float = 0.0,
    ) -> None:
        """
        redis     — redis.asyncio.Redis client.
        prefix    — prefix for account keys.
        preload   — starting balance of a fresh (or expired) account.
        extra_ttl — extra TTL buffer after the account has refilled (seconds).
        """
        self._redis: Final[RedisClientProtocol] = redis
        self._prefix: Final = prefix
        self._preload: Final = float(preload)
        self._extra_ttl: Final = float(extra_ttl)
        # Script object caches SHA and transparently uses EVAL/EVALSHA.
        self._script: ScriptProtocol = redis.register_script(BANK_LUA)

    def redis_key(self, key: Hashable) -> str:
        return f"{self._prefix}{key}"

    async def update(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
    ) -> float:
        _ = now  # server time is used inside Lua script
        _, balance = await self._run(key, params, debit, "")
        return balance

    async def try_debit(
        self,
        key: Hashable,
        now: float,
        params: RateParams,
        debit: float,
        threshold: float,
    ) -> tuple[bool, float]:
        _ = now
        return await self._run(key, params, debit, threshold)

    async def clear(self) -> None:
        """Delete keys with the prefix (handy for tests/debug)."""
        pattern = f"{self._prefix}*"
        async for key in self._redis.scan_iter(match=pattern):
            _ = await self._redis.delete(key)

    async def _run(
        self,
        key: Hashable,
        params: RateParams,
        debit: float,
        threshold: float | str,
    ) -> tuple[bool, float]:
        args: list[float | str] = [
            params.accrual_rate,
            params.max_balance,
            params.min_balance,
            debit,
            threshold,
            self._preload,
            self._extra_ttl,
        ]
        result = await self._script(keys=[self.redis_key(key)], args=args)
        admitted, balance = result
        if isinstance(balance, bytes):
            balance = balance.decode()
        return bool(admitted), float(str(balance))
