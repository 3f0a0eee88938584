"""Coordination state for the N browser legs of one logical test.

``TestController`` records what went wrong where: a per-leg error stops only
that leg, the single fatal error stops all of them. Every await point of a
render job consults a ``CancellationToken`` derived from it and returns early
once its leg should stop.

``StepQueue`` keeps the match exchanges of one leg in the order the steps
were issued even when their renders finish out of order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from eyes_sdk.logger import Logger


class CancellationToken:
    """Read-only view over a stop predicate."""

    def __init__(self, should_stop: Callable[[], bool]) -> None:
        self._should_stop = should_stop

    @property
    def cancelled(self) -> bool:
        return self._should_stop()


class TestController:
    """Errors, render ids and stop flags for one test across its browser legs."""

    __test__ = False

    def __init__(self, test_name: str, num_legs: int) -> None:
        self.test_name = test_name
        self.num_legs = num_legs
        self._errors: list[BaseException | None] = [None] * num_legs
        self._fatal_error: BaseException | None = None
        self._render_ids: list[list[str]] = [[] for _ in range(num_legs)]
        self.aborted_by_user = False

    # errors ---------------------------------------------------------------

    def set_error(self, index: int, error: BaseException) -> None:
        if self._errors[index] is None:
            self._errors[index] = error

    def get_error(self, index: int) -> BaseException | None:
        return self._errors[index]

    def set_fatal_error(self, error: BaseException) -> None:
        """Record the error that stops every leg. The first one wins."""
        if self._fatal_error is None:
            self._fatal_error = error

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal_error

    # render ids -----------------------------------------------------------

    def add_render_id(self, index: int, render_id: str) -> None:
        self._render_ids[index].append(render_id)

    def get_render_ids(self, index: int) -> list[str]:
        return list(self._render_ids[index])

    # abort ----------------------------------------------------------------

    def set_aborted_by_user(self) -> None:
        self.aborted_by_user = True

    # stop predicates ------------------------------------------------------

    def should_stop_all_tests(self) -> bool:
        return self.aborted_by_user or self._fatal_error is not None

    def should_stop_test(self, index: int) -> bool:
        return self.should_stop_all_tests() or self._errors[index] is not None

    def token(self, index: int) -> CancellationToken:
        return CancellationToken(lambda: self.should_stop_test(index))


class StepTicket:
    """One step's place in its leg's queue."""

    def __init__(self, previous: asyncio.Future[None] | None, own: asyncio.Future[None]) -> None:
        self._previous = previous
        self._own = own

    async def wait_previous(self) -> None:
        if self._previous is not None:
            await asyncio.shield(self._previous)

    def finish(self) -> None:
        if not self._own.done():
            self._own.set_result(None)


class StepQueue:
    """FIFO of completion signals for the steps of one browser leg."""

    def __init__(self) -> None:
        self._last: asyncio.Future[None] | None = None

    def enqueue(self) -> StepTicket:
        own: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        ticket = StepTicket(self._last, own)
        self._last = own
        return ticket


class GlobalState:
    """Runner-wide registry: batches awaiting close and queued renders."""

    def __init__(
        self,
        close_batch: Callable[[str], Awaitable[None]] | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._close_batch = close_batch
        self.logger = logger or Logger(label="GlobalState")
        self.batch_ids: set[str] = set()
        self.queued_renders_count = 0

    def add_batch_id(self, batch_id: str) -> None:
        self.batch_ids.add(batch_id)

    def make_test_controller(self, test_name: str, num_legs: int) -> TestController:
        return TestController(test_name, num_legs)

    async def close_batches(self) -> list[BaseException]:
        """Close every registered batch; failures are logged and returned, not raised."""
        if self._close_batch is None or not self.batch_ids:
            return []
        batch_ids = sorted(self.batch_ids)
        self.batch_ids.clear()
        outcomes = await asyncio.gather(
            *(self._close_batch(batch_id) for batch_id in batch_ids),
            return_exceptions=True,
        )
        errors = []
        for batch_id, outcome in zip(batch_ids, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error(f"failed to close batch {batch_id}: {outcome}")
                errors.append(outcome)
        return errors
