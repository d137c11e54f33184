"""Tests for the pty-backed shell."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from termbridge.sessions.shell import PersistentShell, ShellError, strip_ansi


class TestStripAnsi:
    def test_removes_color_codes(self) -> None:
        assert strip_ansi("\x1b[1;32muser@host\x1b[0m:~$ ") == "user@host:~$ "

    def test_removes_osc_title(self) -> None:
        assert strip_ansi("\x1b]0;title\x07prompt$ ") == "prompt$ "

    def test_normalizes_line_endings(self) -> None:
        assert strip_ansi("one\r\ntwo\rthree") == "one\ntwo\nthree"


class TestScrollback:
    def test_partial_lines_are_joined(self, tmp_path: Path) -> None:
        shell = PersistentShell(str(tmp_path), rows=3, cols=10)
        shell.feed_output("hel")
        shell.feed_output("lo\nwor")
        assert shell.get_screen_content() == "\nhello\nwor"

    def test_lines_are_clipped_to_width(self, tmp_path: Path) -> None:
        shell = PersistentShell(str(tmp_path), rows=1, cols=4)
        shell.feed_output("abcdefgh\n")
        assert shell.get_screen_content() == "abcd"

    def test_scrollback_is_bounded(self, tmp_path: Path) -> None:
        shell = PersistentShell(str(tmp_path), rows=2, cols=10, scrollback_lines=5)
        shell.feed_output("".join(f"line{i}\n" for i in range(20)))
        assert shell._scrollback == [f"line{i}" for i in range(15, 20)]
        assert shell.get_screen_content() == "line18\nline19"


class TestPersistentShell:
    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path: Path) -> None:
        shell = PersistentShell(str(tmp_path / "missing"))
        with pytest.raises(ShellError, match="does not exist"):
            await shell.start()
        assert shell.is_alive is False

    @pytest.mark.asyncio
    async def test_send_before_start(self, tmp_path: Path) -> None:
        shell = PersistentShell(str(tmp_path))
        with pytest.raises(ShellError, match="not alive"):
            await shell.send_line("ls")

    @pytest.mark.asyncio
    @pytest.mark.skipif(not os.path.exists("/bin/sh"), reason="requires /bin/sh")
    async def test_runs_commands_in_cwd(self, tmp_path: Path) -> None:
        shell = PersistentShell(str(tmp_path), shell_command="/bin/sh")
        await shell.start()
        try:
            assert shell.is_alive
            await shell.send_line("touch created-by-shell")
            for _ in range(50):
                if (tmp_path / "created-by-shell").exists():
                    break
                await asyncio.sleep(0.1)
            assert (tmp_path / "created-by-shell").exists()
        finally:
            await shell.stop()
        assert shell.is_alive is False
