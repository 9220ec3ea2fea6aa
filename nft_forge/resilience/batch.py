"""
Bounded concurrent fan-out over independent units of work.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

import structlog

from ..core.exceptions import BatchAbortedError, ValidationError


logger = structlog.get_logger(__name__)

U = TypeVar("U")
R = TypeVar("R")


class FailureMode(Enum):
    """What a batch does once a unit has failed."""
    CONTINUE = "continue"  # keep dispatching, report failures at the end
    ABORT = "abort"        # finish the current chunk, then stop


@dataclass
class BatchResult(Generic[U, R]):
    """Units partitioned by outcome, in dispatch order."""
    succeeded: List[Tuple[U, R]] = field(default_factory=list)
    failed: List[Tuple[U, BaseException]] = field(default_factory=list)
    skipped: List[U] = field(default_factory=list)

    @property
    def values(self) -> List[R]:
        return [value for _, value in self.succeeded]

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)


ChunkHook = Callable[[int, Sequence[Any]], Awaitable[None]]


async def run_batch(
    units: Sequence[U],
    worker: Callable[[U], Awaitable[R]],
    parallelism: int = 12,
    mode: FailureMode = FailureMode.CONTINUE,
    before_chunk: Optional[ChunkHook] = None,
    after_chunk: Optional[ChunkHook] = None,
) -> BatchResult:
    """
    Run `worker` over `units`, at most `parallelism` at a time.

    Units are dispatched in chunks; a chunk completes only when every unit in
    it has settled, and one unit's failure never cancels its siblings. In
    ABORT mode the remaining chunks are not dispatched after a chunk with
    failures and BatchAbortedError carries the partial result.
    """
    if parallelism < 1:
        raise ValidationError("parallelism must be at least 1", {"parallelism": parallelism})

    result: BatchResult = BatchResult()
    log = logger.bind(service="batch_runner")

    for index, start in enumerate(range(0, len(units), parallelism), start=1):
        chunk = list(units[start:start + parallelism])
        if before_chunk:
            await before_chunk(index, chunk)

        log.info("Dispatching chunk", chunk=index, size=len(chunk))
        outcomes = await asyncio.gather(
            *(worker(unit) for unit in chunk),
            return_exceptions=True
        )

        chunk_failures = 0
        for unit, outcome in zip(chunk, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                chunk_failures += 1
                result.failed.append((unit, outcome))
                log.error("Unit failed", chunk=index, unit=str(unit), error=str(outcome))
            else:
                result.succeeded.append((unit, outcome))

        log.info(
            "Chunk completed",
            chunk=index,
            succeeded=len(chunk) - chunk_failures,
            failed=chunk_failures
        )
        if after_chunk:
            await after_chunk(index, chunk)

        if chunk_failures and mode is FailureMode.ABORT:
            result.skipped.extend(units[start + parallelism:])
            log.error("Aborting batch", skipped=len(result.skipped))
            raise BatchAbortedError(result, len(result.failed))

    return result
