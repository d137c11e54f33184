"""Shared test fixtures for the termbridge test suite.

Provides temporary data directories, config writers, a controllable clock
and an Automation API service with a mocked session collaborator.
"""

from __future__ import annotations

import contextlib
import json
from pathlib import Path
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from termbridge.automation.errors import AutomationError
from termbridge.automation.models import AutomationCredentials
from termbridge.automation.server import BOOTSTRAP_PATH, CLIENT_HEADER
from termbridge.automation.service import AutomationApiService

_UNSET: Any = object()


class FakeClock:
    """Wall clock in seconds that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Filesystem fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Host data directory; the service uses ``<data_dir>/automation``."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def automation_dir(data_dir: Path) -> Path:
    return data_dir / "automation"


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """An allowlisted project directory (canonical path)."""
    path = tmp_path / "work"
    path.mkdir()
    return path.resolve()


def make_config(work_dir: Path, **overrides: Any) -> dict[str, Any]:
    config: dict[str, Any] = {
        "version": 1,
        "enabled": True,
        "allowedRoots": [str(work_dir)],
        "maxCommands": 25,
        "maxCommandLength": 4096,
        "maxRequestBytes": 256 * 1024,
        "requestTimeoutMs": 20_000,
        "rateLimitPerMinute": 60,
    }
    config.update(overrides)
    return config


def write_config(automation_dir: Path, config: Any) -> Path:
    automation_dir.mkdir(parents=True, exist_ok=True)
    path = automation_dir / "config.json"
    path.write_text(json.dumps(config, indent=2))
    return path


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def on_bootstrap() -> AsyncMock:
    """Session collaborator that always creates ``test-session-123``."""
    return AsyncMock(return_value={"sessionId": "test-session-123"})


@pytest_asyncio.fixture
async def service(
    data_dir: Path, on_bootstrap: AsyncMock, clock: FakeClock
) -> AsyncIterator[AutomationApiService]:
    svc = AutomationApiService(data_dir, on_bootstrap=on_bootstrap, clock=clock)
    yield svc
    # Symlink tests leave paths that stop() refuses to touch.
    with contextlib.suppress(AutomationError):
        await svc.stop()


async def start_with(
    service: AutomationApiService,
    automation_dir: Path,
    work_dir: Path,
    **overrides: Any,
) -> AutomationCredentials:
    """Write an enabled config, (re)start the service and return its credentials."""
    await service.stop()
    write_config(automation_dir, make_config(work_dir, **overrides))
    await service.start()
    credentials = service.get_credentials()
    assert credentials is not None
    return credentials


async def send_request(
    credentials: AutomationCredentials,
    *,
    method: str = "POST",
    path: str = BOOTSTRAP_PATH,
    headers: dict[str, str | None] | None = None,
    body: Any = _UNSET,
    json_body: Any = _UNSET,
) -> httpx.Response:
    """Send a request to a running service.

    Authorization, Content-Type and the client header default to valid
    values; pass ``None`` for a header to leave it out.
    """
    merged: dict[str, str | None] = {
        "Authorization": f"Bearer {credentials.token}",
        "Content-Type": "application/json",
        CLIENT_HEADER: "test-client",
    }
    merged.update(headers or {})
    sent = {key: value for key, value in merged.items() if value is not None}

    content: bytes | None = None
    if json_body is not _UNSET:
        content = json.dumps(json_body).encode()
    elif body is not _UNSET:
        content = body.encode() if isinstance(body, str) else body

    async with httpx.AsyncClient(
        base_url=f"http://{credentials.host}:{credentials.port}",
        trust_env=False,
        timeout=10.0,
    ) as client:
        return await client.request(method, path, headers=sent, content=content)
