"""Audit trail recording on top of the hook registry.

:class:`AuditTrail` is the single entry point the engine uses to record
auditable actions.  It builds the common event context and hands it to
the :class:`~privca.hooks.registry.HookRegistry`.  Recording failures
are logged and never propagate into the PKI operation.

:class:`AuditLogHook` is the built-in sink: it writes every event as a
structured record on the ``privca.audit`` logger, which
:func:`~privca.logging.configure_logging` routes to the rotating audit
file.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from privca.hooks.base import Hook
from privca.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from privca.hooks.registry import HookRegistry

log = logging.getLogger(__name__)
audit_log = logging.getLogger("privca.audit")


class AuditTrail:
    """Record audit events through a :class:`HookRegistry`.

    Parameters
    ----------
    registry:
        Registry to dispatch to, or ``None`` to disable recording.

    """

    def __init__(self, registry: HookRegistry | None) -> None:
        self._registry = registry

    @property
    def registry(self) -> HookRegistry | None:
        return self._registry

    def record(
        self,
        event: str,
        *,
        actor: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record one auditable action.

        Parameters
        ----------
        event:
            Known event name, also stored as the ``action`` key.
        actor:
            Identity that performed the action.
        description:
            Human-readable summary.
        metadata:
            Event-specific details.  UUIDs and datetimes are stringified.

        """
        if self._registry is None:
            return
        context = {
            "action": event,
            "actor": actor,
            "description": description,
            "metadata": _jsonable(metadata or {}),
            "timestamp": datetime.now(UTC).isoformat(),
        }
        try:
            self._registry.dispatch(event, context)
        except Exception:  # noqa: BLE001
            log.warning("Failed to record audit event '%s'", event, exc_info=True)


def _jsonable(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class AuditLogHook(Hook):
    """Write every audit event to the ``privca.audit`` logger."""

    def _write(self, ctx: dict) -> None:
        safe = sanitize_for_logs(ctx)
        audit_log.info(
            "%s by %s: %s",
            safe.get("action"),
            safe.get("actor"),
            safe.get("description"),
            extra={
                "audit_action": safe.get("action"),
                "audit_actor": safe.get("actor"),
                "audit_metadata": safe.get("metadata"),
                "audit_timestamp": safe.get("timestamp"),
            },
        )

    on_ca_initialization = _write
    on_ca_activation = _write
    on_ca_upload_rejected = _write
    on_ca_deletion = _write
    on_certificate_issuance = _write
    on_certificate_revocation = _write
    on_certificate_validation = _write
    on_certificate_export = _write
    on_crl_generation = _write
