"""Session collaborator used when termbridge runs as a standalone host.

:meth:`ShellSessionManager.bootstrap` matches the Automation API's
``on_bootstrap`` contract: open a shell in the requested directory, type
the commands into it, and hand back the new session's id.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable

from termbridge.automation.models import BootstrapRequest, BootstrapResult
from termbridge.sessions.shell import PersistentShell, ShellError

logger = logging.getLogger(__name__)

ShellFactory = Callable[[str], PersistentShell]


class ShellSessionManager:
    """Creates and tracks one :class:`PersistentShell` per session."""

    def __init__(
        self,
        shell_command: str = "/bin/bash",
        rows: int = 24,
        cols: int = 80,
        command_delay: float = 0.2,
        shell_factory: ShellFactory | None = None,
    ) -> None:
        self._command_delay = command_delay
        self._shell_factory = shell_factory or (
            lambda cwd: PersistentShell(cwd, shell_command=shell_command, rows=rows, cols=cols)
        )
        self._sessions: dict[str, PersistentShell] = {}

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> PersistentShell | None:
        return self._sessions.get(session_id)

    async def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        """Start a shell in ``request.cwd`` and type each command into it.

        Raises:
            ShellError: The shell could not be started or written to.
        """
        shell = self._shell_factory(request.cwd)
        await shell.start()
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = shell
        try:
            # Give the shell a moment to print its prompt before typing.
            await asyncio.sleep(self._command_delay)
            for command in request.commands:
                await shell.send_line(command)
                await asyncio.sleep(self._command_delay)
        except ShellError:
            await self.close(session_id)
            raise
        logger.info(
            "Session %s started in %s with %d command(s)",
            session_id, request.cwd, len(request.commands),
        )
        return BootstrapResult(session_id=session_id)

    async def close(self, session_id: str) -> bool:
        shell = self._sessions.pop(session_id, None)
        if shell is None:
            return False
        await shell.stop()
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
