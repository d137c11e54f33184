"""Pseudo-terminal shell backing one bootstrapped session.

Forks an interactive shell on a pty rooted at the session's working
directory and keeps a bounded, escape-stripped scrollback of its output.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import pty
import re
import select
import signal
import struct
import termios

logger = logging.getLogger(__name__)

_ANSI_PATTERNS = (
    re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]"),  # CSI
    re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"),  # OSC
    re.compile(r"\x1b[()][AB012]"),
    re.compile(r"\x1b[>=]"),
    re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]"),
)

def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences and normalize line endings."""
    for pattern in _ANSI_PATTERNS:
        text = pattern.sub("", text)
    return text.replace("\r\n", "\n").replace("\r", "\n")


class ShellError(Exception):
    """Raised when shell operations fail."""


class PersistentShell:
    """An interactive shell subprocess attached to a pty."""

    def __init__(
        self,
        cwd: str,
        shell_command: str = "/bin/bash",
        rows: int = 24,
        cols: int = 80,
        scrollback_lines: int = 1000,
    ) -> None:
        self._cwd = cwd
        self._shell_command = shell_command
        self._rows = rows
        self._cols = cols
        self._scrollback_lines = scrollback_lines
        self._scrollback: list[str] = []
        self._partial_line = ""
        self._is_alive = False
        self._read_task: asyncio.Task[None] | None = None
        self._master_fd: int | None = None
        self._pid: int | None = None

    @property
    def is_alive(self) -> bool:
        return self._is_alive

    @property
    def cwd(self) -> str:
        return self._cwd

    async def start(self) -> None:
        """Fork the shell in ``cwd``. Raises ShellError if ``cwd`` is unusable."""
        if not os.path.isdir(self._cwd):
            raise ShellError(f"Working directory does not exist: {self._cwd}")

        master_fd, slave_fd = pty.openpty()
        winsize = struct.pack("HHHH", self._rows, self._cols, 0, 0)
        fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsize)

        env = os.environ.copy()
        env["TERM"] = "xterm-256color"
        env["COLUMNS"] = str(self._cols)
        env["LINES"] = str(self._rows)
        env["PWD"] = self._cwd

        pid = os.fork()
        if pid == 0:
            try:
                os.close(master_fd)
                os.setsid()
                fcntl.ioctl(slave_fd, termios.TIOCSCTTY, 0)
                for fd in (0, 1, 2):
                    os.dup2(slave_fd, fd)
                if slave_fd > 2:
                    os.close(slave_fd)
                os.chdir(self._cwd)
                os.execvpe(self._shell_command, [self._shell_command], env)
            finally:
                os._exit(127)

        os.close(slave_fd)
        self._pid = pid
        self._master_fd = master_fd
        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

        self._is_alive = True
        self._read_task = asyncio.create_task(self._read_output_loop())
        logger.info(
            "Started shell %s in %s (pid=%d, %dx%d)",
            self._shell_command, self._cwd, pid, self._cols, self._rows,
        )

    async def stop(self) -> None:
        """Terminate the shell, escalating to SIGKILL if needed."""
        self._is_alive = False
        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

        if self._pid is not None:
            try:
                os.kill(self._pid, signal.SIGTERM)
                await asyncio.sleep(0.2)
                pid, _ = os.waitpid(self._pid, os.WNOHANG)
                if pid == 0:
                    os.kill(self._pid, signal.SIGKILL)
                    os.waitpid(self._pid, 0)
            except (ProcessLookupError, ChildProcessError):
                pass
            self._pid = None

        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None
        logger.info("Shell in %s stopped", self._cwd)

    async def send_input(self, data: str) -> None:
        if not self._is_alive or self._master_fd is None:
            raise ShellError("Shell is not alive")
        try:
            os.write(self._master_fd, data.encode())
        except OSError as e:
            raise ShellError(f"Failed to write to shell: {e}") from e

    async def send_line(self, command: str) -> None:
        await self.send_input(command + "\n")

    def get_screen_content(self) -> str:
        """The last ``rows`` lines of output, padded and clipped to ``cols``."""
        lines = self._scrollback[-self._rows:]
        if self._partial_line:
            lines = (lines + [self._partial_line])[-self._rows:]
        lines = [""] * (self._rows - len(lines)) + lines
        return "\n".join(line[: self._cols] for line in lines)

    def feed_output(self, data: str) -> None:
        """Append raw pty output to the scrollback."""
        text = strip_ansi(self._partial_line + data)
        lines = text.split("\n")
        self._partial_line = lines.pop()
        self._scrollback.extend(lines)
        if len(self._scrollback) > self._scrollback_lines:
            del self._scrollback[: -self._scrollback_lines]

    async def _read_output_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._is_alive and self._master_fd is not None:
            try:
                data = await loop.run_in_executor(None, self._read_master)
            except asyncio.CancelledError:
                break
            if data is None:
                await asyncio.sleep(0.05)
                continue
            self.feed_output(data)

    def _read_master(self) -> str | None:
        try:
            ready, _, _ = select.select([self._master_fd], [], [], 0.1)
            if ready:
                data = os.read(self._master_fd, 4096)
                if data:
                    return data.decode("utf-8", errors="replace")
        except (OSError, ValueError, TypeError):
            return None
        return None
