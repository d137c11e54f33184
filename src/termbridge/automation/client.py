"""Client for local tools that drive a running Automation API.

Reads the credential file the service writes while it runs, then talks to
the loopback listener with the required headers::

    async with AutomationClient.from_data_dir("~/.termbridge") as client:
        session_id = await client.bootstrap("/home/me/work", ["git status"])
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx
from pydantic import ValidationError

from termbridge.automation.errors import AutomationError
from termbridge.automation.fs_guard import read_private_file
from termbridge.automation.models import AutomationCredentials
from termbridge.automation.server import BOOTSTRAP_PATH, CLIENT_HEADER
from termbridge.automation.service import AUTOMATION_DIRNAME, CREDENTIALS_FILENAME

logger = logging.getLogger(__name__)


class AutomationClientError(AutomationError):
    """Raised when the Automation API cannot be reached or refuses a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def load_credentials(credentials_path: Path) -> AutomationCredentials:
    """Read the credential file of a running service."""
    try:
        raw = read_private_file(credentials_path)
    except UnicodeDecodeError as e:
        raise AutomationClientError(f"Unreadable credentials file {credentials_path}") from e
    if raw is None:
        raise AutomationClientError(
            f"No credentials at {credentials_path}; is the Automation API enabled?"
        )
    try:
        return AutomationCredentials.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise AutomationClientError(f"Unreadable credentials file {credentials_path}") from e


class AutomationClient:
    """Async httpx client for ``POST /v1/terminal/bootstrap``."""

    def __init__(
        self,
        credentials: AutomationCredentials,
        client_name: str = "termbridge-cli",
        timeout: float = 130.0,
    ) -> None:
        self._credentials = credentials
        self._client_name = client_name
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_data_dir(cls, data_dir: Path | str, **kwargs) -> AutomationClient:
        path = Path(data_dir).expanduser() / AUTOMATION_DIRNAME / CREDENTIALS_FILENAME
        return cls(load_credentials(path), **kwargs)

    @property
    def base_url(self) -> str:
        return f"http://{self._credentials.host}:{self._credentials.port}"

    async def connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            trust_env=False,
            headers={
                "Authorization": f"Bearer {self._credentials.token}",
                CLIENT_HEADER: self._client_name,
            },
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AutomationClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    async def bootstrap(self, cwd: str, commands: list[str]) -> str:
        """Ask the host to open a session in ``cwd`` and type ``commands``.

        Returns:
            The new session's identifier.

        Raises:
            AutomationClientError: On connection failure or any non-201 reply.
        """
        if self._client is None:
            raise AutomationClientError("Client is not connected")
        try:
            resp = await self._client.post(
                BOOTSTRAP_PATH, json={"cwd": cwd, "commands": commands}
            )
        except httpx.HTTPError as e:
            raise AutomationClientError(f"Request to {self.base_url} failed: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code != 201:
            message = body.get("error") if isinstance(body, dict) else None
            raise AutomationClientError(
                message or f"Unexpected status {resp.status_code}",
                status_code=resp.status_code,
            )
        session_id = body.get("sessionId") if isinstance(body, dict) else None
        if not isinstance(session_id, str):
            raise AutomationClientError("Response did not include a sessionId", 201)
        logger.debug("Bootstrapped session %s in %s", session_id, cwd)
        return session_id
