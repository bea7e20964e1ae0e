"""
Fan-out over sibling nodes

Siblings at one tree level are processed either one after another
(depth-first per branch) or as one task per sibling joined before the
caller returns.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from .config import OrchestratorConfig


T = TypeVar("T")


async def fan_out(
    nodes: Sequence[T],
    action: Callable[[T], Awaitable[None]],
    config: OrchestratorConfig,
    parallel: Optional[bool] = None
) -> None:
    """
    Run `action` for every node according to the scheduling policy

    In parallel mode all siblings run to completion before the first failure
    (in declaration order) is re-raised, so nothing is left running when this
    returns.

    Args:
        nodes: Sibling nodes in declaration order
        action: Coroutine function applied to each node
        config: Run configuration (policy and concurrency bound)
        parallel: Override the configured policy
    """
    if parallel is None:
        parallel = config.parallel

    if not parallel or len(nodes) < 2:
        for node in nodes:
            await action(node)
        return

    semaphore = asyncio.Semaphore(config.max_parallel) if config.max_parallel else None

    async def run(node: T) -> None:
        if semaphore is None:
            await action(node)
            return
        async with semaphore:
            await action(node)

    results = await asyncio.gather(*(run(n) for n in nodes), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
