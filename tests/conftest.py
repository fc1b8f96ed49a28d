import os
from collections.abc import AsyncIterator, Iterator
from importlib import import_module
from pathlib import Path
from types import TracebackType
from typing import Protocol, cast

import pytest
import redis.asyncio as redis

from aioratebank import RateBank, RateParams
from aioratebank.backends.redis import RedisBackend


class _RedisContainerProto(Protocol):
    def __enter__(self) -> "_RedisContainerProto": ...
    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None: ...

    def get_container_host_ip(self) -> str: ...
    def get_exposed_port(self, port: int | str) -> str: ...


def _docker_host_available() -> bool:
    """Point DOCKER_HOST at a reachable Docker socket, if there is one.

    Tries rootless/Podman/Colima/classic paths.
    """

    if os.environ.get("DOCKER_HOST"):
        return True

    uid = os.getuid()
    candidates = [
        f"unix:///run/user/{uid}/docker.sock",  # rootless Docker
        f"unix:///run/user/{uid}/podman/podman.sock",  # Podman Docker API
        f"unix://{Path.home()}/.colima/default/docker.sock",  # Colima
        "unix:///var/run/docker.sock",  # classic Docker
    ]

    for url in candidates:
        if Path(url.removeprefix("unix://")).exists():
            os.environ["DOCKER_HOST"] = url
            return True
    return False


@pytest.fixture
def params() -> RateParams:
    """1000 bytes/sec, at most 5000 saved, at most 5000 owed."""
    return RateParams(accrual_rate=1000.0, max_balance=5000.0, min_balance=-5000.0)


@pytest.fixture(scope="session")
def redis_url() -> Iterator[str]:
    """Start a real Redis in Docker and yield its URL."""

    if not _docker_host_available():
        pytest.skip("Docker socket not found; set DOCKER_HOST")

    # Dynamically import testcontainers.redis to avoid missing-stub errors.
    container_cls = cast(
        type[_RedisContainerProto],
        import_module("testcontainers.redis").RedisContainer,
    )
    container = cast(_RedisContainerProto, cast(object, container_cls()))
    with container:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(6379)
        yield f"redis://{host}:{port}/0"


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncIterator[redis.Redis]:
    """Async redis client talking to the container."""

    client = redis.Redis.from_url(redis_url, decode_responses=True)
    _ = await client.ping()
    try:
        yield client
    finally:
        _ = await client.aclose()


@pytest.fixture
async def redis_backend(
    redis_client: redis.Redis,
) -> AsyncIterator[RedisBackend]:
    """RedisBackend for integration tests, cleaned around each test."""

    backend = RedisBackend(
        redis_client,
        prefix="test:ratebank:",
        preload=3.0,
        extra_ttl=1.0,
    )
    await backend.clear()
    try:
        yield backend
    finally:
        await backend.clear()


@pytest.fixture
def redis_rate_bank(redis_backend: RedisBackend) -> RateBank:
    """RateBank configured to use the live Redis backend."""

    params = RateParams(accrual_rate=1.0, max_balance=3.0, min_balance=-3.0)
    return RateBank(params, backend=redis_backend)
