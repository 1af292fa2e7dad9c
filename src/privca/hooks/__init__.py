"""Audit hooks subsystem for PRIVCA.

Every PKI operation reports a structured ``{action, actor, description,
metadata}`` event through :class:`AuditTrail`; registered hooks receive
it asynchronously.

Public API::

    from privca.hooks import Hook, HookRegistry, KNOWN_EVENTS

    class MySiemHook(Hook):
        def on_certificate_issuance(self, ctx: dict) -> None:
            ...
"""

from privca.hooks.audit import AuditLogHook, AuditTrail
from privca.hooks.base import Hook
from privca.hooks.events import KNOWN_EVENTS
from privca.hooks.registry import HookRegistry

__all__ = ["KNOWN_EVENTS", "AuditLogHook", "AuditTrail", "Hook", "HookRegistry"]
