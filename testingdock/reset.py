"""
Container reset actions

A reset action is called with the Container being reset and may be a plain
or async callable. It must be idempotent: a reset brings a running
container back to a clean state without recreating it.
"""

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Callable

from .exceptions import ResetError

if TYPE_CHECKING:
    from .container import Container


ResetFunc = Callable[["Container"], Any]


def reset_restart(timeout: int = 10) -> ResetFunc:
    """Reset action that restarts the container process"""
    async def action(container: "Container"):
        await asyncio.to_thread(container.docker.restart_container, container.id, timeout)

    return action


def reset_custom(fn: Callable[[], Any]) -> ResetFunc:
    """
    Wrap a zero-argument callable as a reset action

    Useful for resets that clear state through the service itself,
    e.g. dropping database schemas.
    """
    async def action(container: "Container"):
        if inspect.iscoroutinefunction(fn):
            await fn()
            return
        result = await asyncio.to_thread(fn)
        if inspect.isawaitable(result):
            await result

    return action


async def run_reset_action(action: ResetFunc, container: "Container") -> None:
    """
    Invoke a reset action for a container

    Raises:
        ResetError: If the action raises
    """
    try:
        result = action(container)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        raise ResetError(container.name, container.id, str(e) or type(e).__name__) from e
