"""
Health Checking

Provides:
- The polling loop that gates start and reset
- Built-in health check predicates (HTTP, TCP)

A health check is a zero-argument callable, plain or async. It passes when
it returns anything but False, and fails when it returns False or raises.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

import httpx

from .exceptions import HealthCheckTimeoutError


HealthCheckFunc = Callable[[], Any]

logger = logging.getLogger("HealthCheck")


async def check_once(predicate: HealthCheckFunc) -> Optional[str]:
    """
    Invoke a health check a single time

    Synchronous predicates run in a worker thread so they cannot stall
    sibling containers starting in parallel.

    Returns:
        None on success, otherwise the failure reason
    """
    try:
        if inspect.iscoroutinefunction(predicate):
            result = await predicate()
        else:
            result = await asyncio.to_thread(predicate)
            if inspect.isawaitable(result):
                result = await result
    except Exception as e:
        return str(e) or type(e).__name__

    if result is False:
        return "health check returned False"
    return None


async def wait_until_healthy(
    predicate: HealthCheckFunc,
    name: str,
    container_id: Optional[str],
    timeout: float,
    interval: float
) -> int:
    """
    Poll `predicate` every `interval` seconds until it passes

    The first poll happens one interval after the call. Caller cancellation
    propagates unchanged.

    Raises:
        HealthCheckTimeoutError: If no poll passed within `timeout` seconds

    Returns:
        Number of polls it took
    """
    polls = 0
    last_error = None

    async def poll():
        nonlocal polls, last_error
        while True:
            await asyncio.sleep(interval)
            polls += 1
            reason = await check_once(predicate)
            if reason is None:
                return
            last_error = reason
            logger.info(f"(setup ) {name:<25} ({container_id}) - container health failure: {reason}")

    try:
        await asyncio.wait_for(poll(), timeout=timeout)
    except asyncio.TimeoutError:
        raise HealthCheckTimeoutError(name, container_id, timeout, last_error) from None

    return polls


def health_check_http(url: str, timeout: float = 5.0) -> HealthCheckFunc:
    """
    Health check passing when `url` answers 200 OK

    Args:
        url: URL to GET
        timeout: Per-request timeout in seconds
    """
    async def check():
        async with httpx.AsyncClient(timeout=timeout) as client:
            res = await client.get(url)
        if res.status_code != httpx.codes.OK:
            raise RuntimeError(f"wrong status code: {res.status_code} {res.reason_phrase}")
        return True

    return check


def health_check_tcp(host: str, port: int, timeout: float = 5.0) -> HealthCheckFunc:
    """Health check passing when a TCP connection to host:port succeeds"""
    async def check():
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        writer.close()
        await writer.wait_closed()
        return True

    return check
