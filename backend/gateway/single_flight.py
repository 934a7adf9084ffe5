"""
Single-Flight Coordinator
Collapses concurrent generations for one fingerprint into a single leader
task. Waiters share the leader's future; a waiter that times out or is
cancelled detaches without disturbing the leader.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.logging import get_logger
from utils.sharding import ShardedLocks

# Initialize logger
logger = get_logger(__name__)


@dataclass
class InFlightToken:
    fingerprint: str
    future: "asyncio.Future[Any]"
    waiters: int = 1
    task: Optional["asyncio.Task[Any]"] = field(default=None, repr=False)


@dataclass
class FlightHandle:
    """What acquire_or_join hands back to a caller."""

    is_leader: bool
    token: InFlightToken

    @property
    def fingerprint(self) -> str:
        return self.token.fingerprint

    @property
    def future(self) -> "asyncio.Future[Any]":
        return self.token.future


class SingleFlightCoordinator:
    """
    At most one in-flight generation per fingerprint, process-wide.

    The token table is split into shards; each shard has its own lock and
    dict so unrelated fingerprints never contend.
    """

    def __init__(self, shard_count: int = 16):
        self.locks = ShardedLocks(shard_count)
        self._tables: List[Dict[str, InFlightToken]] = [{} for _ in range(shard_count)]

        self.stats = {
            "leaders": 0,
            "joins": 0,
            "detached": 0,
            "failed_flights": 0
        }

    def _table(self, fingerprint: str) -> Dict[str, InFlightToken]:
        return self._tables[self.locks.index(fingerprint)]

    async def acquire_or_join(self, fingerprint: str) -> FlightHandle:
        """Become leader for a fingerprint, or join the flight already running."""
        async with self.locks.lock_for(fingerprint):
            table = self._table(fingerprint)
            token = table.get(fingerprint)

            if token is not None and not token.future.done():
                token.waiters += 1
                self.stats["joins"] += 1
                logger.debug("single_flight_joined", fingerprint=fingerprint, waiters=token.waiters)
                return FlightHandle(is_leader=False, token=token)

            token = InFlightToken(
                fingerprint=fingerprint,
                future=asyncio.get_running_loop().create_future()
            )
            table[fingerprint] = token
            self.stats["leaders"] += 1
            return FlightHandle(is_leader=True, token=token)

    def run_leader(self, handle: FlightHandle, work: Callable[[], Awaitable[Any]]) -> "asyncio.Task[Any]":
        """
        Start the leader's work as an independent task.

        The task's outcome resolves the shared future; the token is removed
        as soon as that happens.
        """
        if not handle.is_leader:
            raise RuntimeError("only the leader may start a flight")

        token = handle.token

        async def _lead():
            try:
                result = await work()
            except asyncio.CancelledError:
                if not token.future.done():
                    token.future.cancel()
                raise
            except Exception as e:
                self.stats["failed_flights"] += 1
                if not token.future.done():
                    token.future.set_exception(e)
                raise
            else:
                if not token.future.done():
                    token.future.set_result(result)
                return result
            finally:
                await self._release(token)

        token.task = asyncio.get_running_loop().create_task(_lead())
        token.task.add_done_callback(_consume_task_exception)
        token.future.add_done_callback(_consume_future_exception)
        return token.task

    async def wait(self, handle: FlightHandle, timeout: Optional[float] = None) -> Any:
        """
        Wait for the flight's result.

        The shared future is shielded: a timeout or cancellation here only
        detaches this caller.

        Raises:
            asyncio.TimeoutError: Deadline passed before the flight finished
            Exception: Whatever the leader raised
        """
        try:
            return await asyncio.wait_for(asyncio.shield(handle.future), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if not handle.future.done():
                handle.token.waiters = max(0, handle.token.waiters - 1)
                self.stats["detached"] += 1
                logger.info(
                    "single_flight_waiter_detached",
                    fingerprint=handle.fingerprint,
                    leader=handle.is_leader,
                    waiters=handle.token.waiters
                )
            raise

    async def _release(self, token: InFlightToken):
        async with self.locks.lock_for(token.fingerprint):
            table = self._table(token.fingerprint)
            if table.get(token.fingerprint) is token:
                del table[token.fingerprint]

    def in_flight(self) -> int:
        return sum(len(table) for table in self._tables)

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "in_flight": self.in_flight()}


def _consume_task_exception(task: "asyncio.Task[Any]"):
    if not task.cancelled():
        task.exception()


def _consume_future_exception(future: "asyncio.Future[Any]"):
    if not future.cancelled():
        future.exception()


__all__ = ["SingleFlightCoordinator", "FlightHandle", "InFlightToken"]
