"""termbridge -- local automation bridge for terminal sessions.

A host application embeds :class:`termbridge.automation.AutomationApiService`
to let trusted local tools open terminal sessions and type startup
commands into them over a loopback-only, token-protected HTTP endpoint.
"""

__version__ = "0.1.0"
