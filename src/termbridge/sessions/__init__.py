"""Terminal sessions opened on behalf of the Automation API."""

from termbridge.sessions.manager import ShellSessionManager
from termbridge.sessions.shell import PersistentShell, ShellError

__all__ = ["PersistentShell", "ShellError", "ShellSessionManager"]
