"""Runs the session-creation collaborator for a validated request.

The collaborator call is raced against ``requestTimeoutMs``. On timeout the
call is detached rather than cancelled; its eventual outcome is logged and
dropped. ``fail_all`` lets the service answer every in-flight request when
it shuts down instead of leaving them hanging.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from termbridge.automation.errors import (
    BootstrapFailedError,
    BootstrapTimeoutError,
    ServiceShuttingDownError,
)
from termbridge.automation.models import BootstrapRequest, BootstrapResult

logger = logging.getLogger(__name__)

BootstrapHandler = Callable[[BootstrapRequest], Awaitable[Any]]


@dataclass(eq=False)
class PendingBootstrap:
    """An in-flight collaborator call and the waiter its request awaits."""

    request: BootstrapRequest
    waiter: asyncio.Future[BootstrapResult]
    task: asyncio.Task[Any] = field(repr=False)


def _coerce_result(value: Any) -> BootstrapResult:
    if isinstance(value, BootstrapResult):
        return value
    if isinstance(value, Mapping):
        try:
            return BootstrapResult.model_validate(dict(value))
        except ValidationError:
            pass
    raise BootstrapFailedError("Bootstrap handler returned an invalid result")


class BootstrapExecutor:
    """Invokes ``on_bootstrap`` with a per-request timeout."""

    def __init__(self, on_bootstrap: BootstrapHandler) -> None:
        self._on_bootstrap = on_bootstrap
        self._pending: set[PendingBootstrap] = set()
        self._detached: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def reopen(self) -> None:
        """Accept new requests again after :meth:`fail_all`."""
        self._closed = False

    async def execute(self, request: BootstrapRequest, timeout_ms: int) -> BootstrapResult:
        """Return the collaborator's result or raise an ``ApiError``.

        Raises:
            BootstrapFailedError: The collaborator raised or returned junk.
            BootstrapTimeoutError: No outcome within ``timeout_ms``.
            ServiceShuttingDownError: The service stopped while waiting.
        """
        if self._closed:
            raise ServiceShuttingDownError("Automation API is shutting down")
        waiter: asyncio.Future[BootstrapResult] = asyncio.get_running_loop().create_future()
        task = asyncio.create_task(self._invoke(request))
        pending = PendingBootstrap(
            request=request,
            waiter=waiter,
            task=task,
        )
        self._pending.add(pending)
        self._detached.add(task)
        task.add_done_callback(lambda t: self._settle(pending, t))
        try:
            return await asyncio.wait_for(waiter, timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Bootstrap for %s timed out after %d ms", request.cwd, timeout_ms
            )
            raise BootstrapTimeoutError(
                f"Bootstrap timed out after {timeout_ms} ms"
            ) from e
        finally:
            self._pending.discard(pending)

    def fail_all(self, message: str = "Automation API is shutting down") -> int:
        """Fail every waiting request and refuse new ones until :meth:`reopen`.

        Returns how many waiting requests were failed.
        """
        self._closed = True
        failed = 0
        for pending in list(self._pending):
            if not pending.waiter.done():
                pending.waiter.set_exception(ServiceShuttingDownError(message))
                failed += 1
        self._pending.clear()
        if failed:
            logger.info("Failed %d in-flight bootstrap request(s): %s", failed, message)
        return failed

    async def _invoke(self, request: BootstrapRequest) -> Any:
        return await self._on_bootstrap(request)

    def _settle(self, pending: PendingBootstrap, task: asyncio.Task[Any]) -> None:
        self._detached.discard(task)
        if task.cancelled():
            outcome: BaseException | BootstrapResult = BootstrapFailedError(
                "Bootstrap was cancelled"
            )
        elif task.exception() is not None:
            exc = task.exception()
            outcome = BootstrapFailedError(str(exc) or exc.__class__.__name__)
        else:
            try:
                outcome = _coerce_result(task.result())
            except BootstrapFailedError as e:
                outcome = e

        waiter = pending.waiter
        if waiter.done():
            logger.info(
                "Discarding bootstrap outcome for %s that arrived after its request ended",
                pending.request.cwd,
            )
            return
        if isinstance(outcome, BaseException):
            logger.warning("Bootstrap for %s failed: %s", pending.request.cwd, outcome)
            waiter.set_exception(outcome)
        else:
            waiter.set_result(outcome)
