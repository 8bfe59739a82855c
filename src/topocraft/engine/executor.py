"""Executor for applying plans through a provider.

A single coordinating task owns the ready set and the results. Workers
run one provider call each and report back over a queue, so nothing
shared is mutated from more than one task.
"""
import asyncio
import heapq
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..config.settings import EngineSettings
from ..errors import PermanentProviderError, ProviderError
from ..utils.audit_log import record_operation
from ..utils.logging_config import timed_section
from ..utils.retry import call_with_retry
from .schema import (
    ApplyResult,
    Operation,
    OperationAction,
    OperationResult,
    OperationStatus,
    Plan,
    RemoteHandle,
)

if TYPE_CHECKING:
    from ..providers.base import Provider

logger = logging.getLogger(__name__)


@dataclass
class _Completion:
    """Message a worker sends when its operation finishes."""
    index: int
    handle: Optional[RemoteHandle] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    duration_ms: float = 0.0


_CANCEL = object()


class PlanExecutor:
    """Apply a plan with bounded concurrency and partial-failure accounting."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        """
        Initialize executor.

        Args:
            settings: Concurrency, retry and audit options
        """
        self.settings = settings or EngineSettings()
        self.last_result: Optional[ApplyResult] = None
        self._cancel_requested = False
        self._queue: Optional[asyncio.Queue] = None

    def cancel(self) -> None:
        """Stop dispatching. In-flight operations finish; pending ones are skipped."""
        self._cancel_requested = True
        if self._queue is not None:
            self._queue.put_nowait(_CANCEL)

    async def apply(
        self,
        plan: Plan,
        provider: "Provider",
        dry_run: bool = False
    ) -> ApplyResult:
        """
        Execute a plan.

        Args:
            plan: Ordered operations with their ``requires`` edges
            provider: Connected provider adapter
            dry_run: Report every operation as skipped without remote calls

        Returns:
            ApplyResult with the final status of every operation
        """
        self._cancel_requested = False
        run_id = uuid.uuid4().hex[:12]
        result = ApplyResult(
            results=[OperationResult(operation=op) for op in plan],
            dry_run=dry_run,
        )
        self.last_result = result

        if dry_run:
            for item in result.results:
                item.status = OperationStatus.SKIPPED
                item.reason = "dry run"
            self._audit(result, run_id)
            return result

        logger.info(
            f"Applying {len(plan)} operations "
            f"(max {self.settings.max_concurrent_operations} in flight, run {run_id})"
        )

        self._queue = asyncio.Queue()
        try:
            await self._coordinate(plan, provider, result)
        finally:
            self._queue = None
            self._finalize(result)
            self._audit(result, run_id)

        logger.info(
            f"Apply finished: {len(result.applied)} applied, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
            f"{' (cancelled)' if result.cancelled else ''}"
        )
        return result

    async def _coordinate(self, plan: Plan, provider: "Provider", result: ApplyResult) -> None:
        """Dispatch ready operations and collect completions."""
        results = result.results
        dependents: list[list[int]] = [[] for _ in plan]
        waiting = [0] * len(plan)
        for op in plan:
            waiting[op.index] = len(op.requires)
            for required in op.requires:
                dependents[required].append(op.index)

        ready = [op.index for op in plan if waiting[op.index] == 0]
        heapq.heapify(ready)
        in_flight: dict[int, asyncio.Task] = {}
        halted = False

        try:
            while in_flight or (ready and not halted and not self._cancel_requested):
                while (
                    ready
                    and not halted
                    and not self._cancel_requested
                    and len(in_flight) < self.settings.max_concurrent_operations
                ):
                    index = heapq.heappop(ready)
                    results[index].status = OperationStatus.IN_FLIGHT
                    logger.info(f"Starting: {plan[index].describe()}")
                    in_flight[index] = asyncio.create_task(
                        self._run(plan[index], provider, self._queue)
                    )

                if not in_flight:
                    break

                message = await self._queue.get()
                if message is _CANCEL:
                    logger.warning("Apply cancelled; waiting for in-flight operations")
                    continue

                in_flight.pop(message.index)
                self._record(message, results)

                if results[message.index].status == OperationStatus.APPLIED:
                    for dependent in dependents[message.index]:
                        waiting[dependent] -= 1
                        if waiting[dependent] == 0 and results[dependent].status == OperationStatus.PENDING:
                            heapq.heappush(ready, dependent)
                else:
                    self._skip_dependents(message.index, plan, dependents, results)
                    if self.settings.stop_on_error:
                        halted = True

        except asyncio.CancelledError:
            # Let in-flight provider calls finish so nothing is half-submitted
            self._cancel_requested = True
            if in_flight:
                await asyncio.gather(*in_flight.values(), return_exceptions=True)
                while not self._queue.empty():
                    message = self._queue.get_nowait()
                    if message is not _CANCEL:
                        self._record(message, results)
            raise

        finally:
            if self._cancel_requested:
                result.cancelled = True
            if halted:
                for item in results:
                    if item.status == OperationStatus.PENDING:
                        item.status = OperationStatus.SKIPPED
                        item.reason = "stopped after failure"

    async def _run(self, op: Operation, provider: "Provider", queue: asyncio.Queue) -> None:
        """Worker: perform one operation and report back."""
        attempts = 0

        def count(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        start = time.perf_counter()
        completion = _Completion(index=op.index)
        try:
            async with timed_section("apply", resource=op.resource.name, action=op.action.value):
                completion.handle = await call_with_retry(
                    lambda: self._dispatch(op, provider),
                    retries=self.settings.retries,
                    min_wait=self.settings.retry_min_wait,
                    max_wait=self.settings.retry_max_wait,
                    on_attempt=count,
                )
        except asyncio.CancelledError as e:
            completion.error = e
            raise
        except ProviderError as e:
            completion.error = e
        except Exception as e:
            logger.exception(f"Unexpected error during {op.describe()}: {e}")
            completion.error = e
        finally:
            completion.attempts = attempts
            completion.duration_ms = (time.perf_counter() - start) * 1000
            queue.put_nowait(completion)

    async def _dispatch(self, op: Operation, provider: "Provider") -> Optional[RemoteHandle]:
        """Translate an operation into a provider call."""
        if op.action == OperationAction.CREATE:
            return await provider.create_resource(op.resource)

        if op.handle is None:
            raise PermanentProviderError(
                f"No remote handle for {op.resource}; cannot {op.action.value}",
                resource=op.resource.name,
            )

        if op.action == OperationAction.UPDATE:
            return await provider.update_resource(op.handle, op.resource, op.changes)

        await provider.delete_resource(op.handle)
        return op.handle

    def _record(self, message: _Completion, results: list[OperationResult]) -> None:
        item = results[message.index]
        item.attempts = message.attempts
        item.duration_ms = message.duration_ms
        item.handle = message.handle

        if message.error is None:
            item.status = OperationStatus.APPLIED
            logger.info(f"Applied: {item.operation.describe()}")
        else:
            item.status = OperationStatus.FAILED
            item.error = str(message.error) or type(message.error).__name__
            item.error_type = type(message.error).__name__
            logger.error(f"Failed: {item.operation.describe()}: {message.error}")

    def _skip_dependents(
        self,
        index: int,
        plan: Plan,
        dependents: list[list[int]],
        results: list[OperationResult]
    ) -> None:
        """Mark every pending operation downstream of ``index`` as skipped."""
        reason = f"upstream failure: {plan[index].describe()}"
        stack = list(dependents[index])
        while stack:
            dependent = stack.pop()
            item = results[dependent]
            if item.status != OperationStatus.PENDING:
                continue
            item.status = OperationStatus.SKIPPED
            item.reason = reason
            logger.warning(f"Skipped: {item.operation.describe()} ({reason})")
            stack.extend(dependents[dependent])

    def _finalize(self, result: ApplyResult) -> None:
        """Anything still pending was never started."""
        for item in result.results:
            if item.status in (OperationStatus.PENDING, OperationStatus.IN_FLIGHT):
                item.status = OperationStatus.SKIPPED
                item.reason = item.reason or ("cancelled" if result.cancelled else "not started")

    def _audit(self, result: ApplyResult, run_id: str) -> None:
        if not self.settings.audit_log:
            return
        for item in result.results:
            record_operation(item, run_id, dry_run=result.dry_run)
