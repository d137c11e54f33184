"""Tests for the Automation API client against a live loopback service."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conftest import start_with
from termbridge.automation.client import (
    AutomationClient,
    AutomationClientError,
    load_credentials,
)
from termbridge.automation.errors import SymlinkError
from termbridge.automation.models import AutomationCredentials
from termbridge.automation.service import AutomationApiService


class TestLoadCredentials:
    def test_missing_file(self, automation_dir: Path) -> None:
        with pytest.raises(AutomationClientError, match="No credentials"):
            load_credentials(automation_dir / "credentials.json")

    def test_unreadable_file(self, automation_dir: Path) -> None:
        automation_dir.mkdir(parents=True)
        path = automation_dir / "credentials.json"
        path.write_text("{broken")
        with pytest.raises(AutomationClientError, match="Unreadable"):
            load_credentials(path)

    def test_valid_file(self, automation_dir: Path) -> None:
        automation_dir.mkdir(parents=True)
        path = automation_dir / "credentials.json"
        path.write_text(json.dumps({"host": "127.0.0.1", "port": 4321, "token": "tok"}))
        creds = load_credentials(path)
        assert creds == AutomationCredentials(host="127.0.0.1", port=4321, token="tok")

    def test_symlinked_file_refused(self, automation_dir: Path, tmp_path: Path) -> None:
        automation_dir.mkdir(parents=True)
        target = tmp_path / "elsewhere.json"
        target.write_text(json.dumps({"host": "127.0.0.1", "port": 4321, "token": "tok"}))
        (automation_dir / "credentials.json").symlink_to(target)
        with pytest.raises(SymlinkError):
            load_credentials(automation_dir / "credentials.json")

    def test_token_hidden_from_repr(self) -> None:
        creds = AutomationCredentials(port=4321, token="secret-token")
        assert "secret-token" not in repr(creds)


class TestAutomationClient:
    @pytest.mark.asyncio
    async def test_bootstrap(
        self,
        service: AutomationApiService,
        automation_dir: Path,
        data_dir: Path,
        work_dir: Path,
        on_bootstrap: AsyncMock,
    ) -> None:
        await start_with(service, automation_dir, work_dir)
        async with AutomationClient.from_data_dir(data_dir) as client:
            session_id = await client.bootstrap(str(work_dir), ["echo hi"])
        assert session_id == "test-session-123"
        assert on_bootstrap.await_args.args[0].commands == ("echo hi",)

    @pytest.mark.asyncio
    async def test_error_message_and_status(
        self, service: AutomationApiService, automation_dir: Path, work_dir: Path
    ) -> None:
        creds = await start_with(service, automation_dir, work_dir)
        async with AutomationClient(creds) as client:
            with pytest.raises(AutomationClientError) as excinfo:
                await client.bootstrap("/nonexistent/outside", ["echo"])
        assert excinfo.value.status_code == 403
        assert "outside the allowed roots" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_wrong_token(
        self, service: AutomationApiService, automation_dir: Path, work_dir: Path
    ) -> None:
        creds = await start_with(service, automation_dir, work_dir)
        forged = creds.model_copy(update={"token": "not-the-token"})
        async with AutomationClient(forged) as client:
            with pytest.raises(AutomationClientError) as excinfo:
                await client.bootstrap(str(work_dir), ["echo"])
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_service_not_running(
        self, service: AutomationApiService, automation_dir: Path, work_dir: Path
    ) -> None:
        creds = await start_with(service, automation_dir, work_dir)
        await service.stop()
        async with AutomationClient(creds) as client:
            with pytest.raises(AutomationClientError, match="failed") as excinfo:
                await client.bootstrap(str(work_dir), ["echo"])
        assert excinfo.value.status_code is None

    @pytest.mark.asyncio
    async def test_requires_connect(self) -> None:
        client = AutomationClient(AutomationCredentials(port=1, token="t"))
        with pytest.raises(AutomationClientError, match="not connected"):
            await client.bootstrap("/tmp", ["echo"])

    def test_base_url(self) -> None:
        client = AutomationClient(AutomationCredentials(port=4321, token="t"))
        assert client.base_url == "http://127.0.0.1:4321"
