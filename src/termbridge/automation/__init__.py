"""Automation API: a loopback-only HTTP endpoint for local tools.

Lets a trusted local tool ask the host application to open a new terminal
session in an allowlisted directory and type a few startup commands.
"""

from termbridge.automation.config import AutomationConfig, ConfigStore
from termbridge.automation.models import (
    AutomationCredentials,
    AutomationStatus,
    BootstrapRequest,
    BootstrapResult,
)
from termbridge.automation.service import AutomationApiService

__all__ = [
    "AutomationApiService",
    "AutomationConfig",
    "AutomationCredentials",
    "AutomationStatus",
    "BootstrapRequest",
    "BootstrapResult",
    "ConfigStore",
]
