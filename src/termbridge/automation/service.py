"""Lifecycle and credential management for the Automation API.

The service is driven by the host application::

    service = AutomationApiService(data_dir, on_bootstrap=sessions.bootstrap)
    await service.start()          # listens only if config says enabled
    await service.set_enabled(True)
    service.get_credentials()      # AutomationCredentials | None
    await service.stop()

``start``/``stop``/``set_enabled`` are serialized by one asyncio lock.
Request handlers run on the same event loop and only read the state or
bump the rate-limit counter between awaits, so they need no lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import hmac
import json
import logging
import secrets
import socket
import time
from pathlib import Path
from typing import Callable, Iterator

import uvicorn

from termbridge.automation.config import AutomationConfig, ConfigStore
from termbridge.automation.errors import AutomationError, AutomationStartError
from termbridge.automation.executor import BootstrapExecutor, BootstrapHandler
from termbridge.automation.fs_guard import (
    ensure_not_symlink,
    remove_private_file,
    write_private_file,
)
from termbridge.automation.models import LOOPBACK_HOST, AutomationCredentials, AutomationStatus
from termbridge.automation.rate_limit import FixedWindowRateLimiter
from termbridge.automation.server import create_app

logger = logging.getLogger(__name__)

AUTOMATION_DIRNAME = "automation"
CREDENTIALS_FILENAME = "credentials.json"
STARTUP_TIMEOUT = 10.0
SHUTDOWN_GRACE = 5


class ServiceState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signals to the host."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class AutomationApiService:
    """Owns the listener, the credentials and the running/stopped state."""

    def __init__(
        self,
        data_dir: Path | str,
        on_bootstrap: BootstrapHandler,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._automation_dir = Path(data_dir) / AUTOMATION_DIRNAME
        self._credentials_path = self._automation_dir / CREDENTIALS_FILENAME
        self._store = ConfigStore(self._automation_dir)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = ServiceState.STOPPED
        self._config: AutomationConfig | None = None
        self._credentials: AutomationCredentials | None = None
        self._token: bytes | None = None
        self._rate_limiter: FixedWindowRateLimiter | None = None
        self._executor = BootstrapExecutor(on_bootstrap)
        self._server: _EmbeddedServer | None = None
        self._serve_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------
    # Read-only views used by the request pipeline
    # -------------------------------------------------------------------

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def automation_dir(self) -> Path:
        return self._automation_dir

    @property
    def credentials_path(self) -> Path:
        return self._credentials_path

    @property
    def config_store(self) -> ConfigStore:
        return self._store

    @property
    def config(self) -> AutomationConfig | None:
        """The config the listener was started with, None when stopped."""
        if self._state is not ServiceState.RUNNING:
            return None
        return self._config

    @property
    def rate_limiter(self) -> FixedWindowRateLimiter:
        if self._rate_limiter is None:
            raise RuntimeError("Automation API is not running")
        return self._rate_limiter

    @property
    def executor(self) -> BootstrapExecutor:
        return self._executor

    def verify_token(self, candidate: str) -> bool:
        token = self._token
        if token is None or self._state is not ServiceState.RUNNING:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), token)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    async def start(self) -> None:
        """Load the config and open the listener if it is enabled.

        Raises:
            AutomationConfigError: The config file is invalid.
            SymlinkError: A guarded path is a symbolic link.
            AutomationStartError: The listener could not be started.
        """
        async with self._lock:
            if self._state is ServiceState.RUNNING:
                await self._stop_locked()
            await self._start_locked()

    async def stop(self) -> None:
        """Close the listener and forget the credentials. Safe to repeat."""
        async with self._lock:
            await self._stop_locked()

    async def set_enabled(self, enabled: bool) -> AutomationStatus:
        """Persist ``enabled`` and bring the runtime in line with it."""
        async with self._lock:
            updated = self._store.update(enabled=enabled)
            running = self._credentials is not None
            if not running:
                self._config = updated
            if enabled and not running:
                await self._start_locked()
            elif not enabled and running:
                await self._stop_locked()
            elif not enabled:
                self._clear_credentials()
            logger.info("Automation API set to enabled=%s", enabled)
            return self._status()

    def get_status(self) -> AutomationStatus:
        return self._status()

    def get_credentials(self) -> AutomationCredentials | None:
        return self._credentials

    def _status(self) -> AutomationStatus:
        enabled = (
            self._config is not None
            and self._config.enabled
            and self._credentials is not None
        )
        return AutomationStatus(enabled=enabled)

    async def _start_locked(self) -> None:
        self._state = ServiceState.STARTING
        try:
            config = self._store.load()
            ensure_not_symlink(self._credentials_path)
            self._config = config
            if not config.enabled:
                self._clear_credentials()
                self._state = ServiceState.STOPPED
                logger.info("Automation API is disabled")
                return

            sock = self._bind_loopback()
            token = secrets.token_urlsafe(32)
            self._rate_limiter = FixedWindowRateLimiter(
                config.rate_limit_per_minute, clock=self._clock
            )
            await self._serve(sock)
            credentials = AutomationCredentials(
                host=LOOPBACK_HOST, port=sock.getsockname()[1], token=token
            )
            write_private_file(
                self._credentials_path,
                json.dumps(credentials.model_dump(), indent=2) + "\n",
            )
            self._token = token.encode("utf-8")
            self._credentials = credentials
            self._executor.reopen()
            self._state = ServiceState.RUNNING
            logger.info(
                "Automation API listening on http://%s:%d", credentials.host, credentials.port
            )
        except BaseException:
            await self._shutdown_listener()
            self._token = None
            self._credentials = None
            self._rate_limiter = None
            self._state = ServiceState.STOPPED
            with contextlib.suppress(OSError, AutomationError):
                remove_private_file(self._credentials_path)
            raise

    async def _stop_locked(self) -> None:
        was_running = self._server is not None
        self._state = ServiceState.STOPPING
        try:
            self._executor.fail_all()
            await self._shutdown_listener()
        finally:
            self._token = None
            if self._rate_limiter is not None:
                self._rate_limiter.reset()
            self._rate_limiter = None
            self._state = ServiceState.STOPPED
            self._clear_credentials()
        if was_running:
            logger.info("Automation API stopped")

    def _clear_credentials(self) -> None:
        self._credentials = None
        self._token = None
        remove_private_file(self._credentials_path)

    # -------------------------------------------------------------------
    # Listener
    # -------------------------------------------------------------------

    @staticmethod
    def _bind_loopback() -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((LOOPBACK_HOST, 0))
        except OSError as e:
            sock.close()
            raise AutomationStartError(f"Cannot bind {LOOPBACK_HOST}: {e}") from e
        sock.setblocking(False)
        return sock

    async def _serve(self, sock: socket.socket) -> None:
        config = uvicorn.Config(
            create_app(self),
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=SHUTDOWN_GRACE,
        )
        server = _EmbeddedServer(config)
        self._server = server
        self._serve_task = asyncio.create_task(server.serve(sockets=[sock]))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT
        while not server.started:
            if self._serve_task.done():
                exc = None if self._serve_task.cancelled() else self._serve_task.exception()
                sock.close()
                raise AutomationStartError(f"Listener exited during startup: {exc}")
            if loop.time() > deadline:
                sock.close()
                raise AutomationStartError("Listener did not start in time")
            await asyncio.sleep(0.01)

    async def _shutdown_listener(self) -> None:
        server, task = self._server, self._serve_task
        self._server = None
        self._serve_task = None
        if server is None or task is None:
            return
        server.should_exit = True
        try:
            await task
        except Exception:
            logger.exception("Automation API listener exited with an error")
