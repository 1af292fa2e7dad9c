"""CA identity and certificate state machines.

Defines the valid status transitions for CA identities and issued
certificates.  All transitions are enforced via :func:`assert_transition`.

Usage::

    from privca.core.state import CA_TRANSITIONS, assert_transition
    from privca.core.types import CAStatus

    assert_transition(CAStatus.INITIALIZING, CAStatus.ACTIVE, CA_TRANSITIONS)
"""

from __future__ import annotations

import logging

from privca.core.types import CAStatus, CertificateStatus

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CA identity: initializing → active, active → expired (observed on read).
# expired is terminal; removal is administrative deletion, not a status.
# ---------------------------------------------------------------------------

CA_TRANSITIONS: dict[CAStatus, frozenset[CAStatus]] = {
    CAStatus.INITIALIZING: frozenset({CAStatus.ACTIVE}),
    CAStatus.ACTIVE: frozenset({CAStatus.EXPIRED}),
    CAStatus.EXPIRED: frozenset(),
}

# ---------------------------------------------------------------------------
# Issued certificate: active → expired/revoked.  Revocation of an
# expired certificate is still recorded so the CRL history stays complete.
# ---------------------------------------------------------------------------

CERTIFICATE_TRANSITIONS: dict[CertificateStatus, frozenset[CertificateStatus]] = {
    CertificateStatus.ACTIVE: frozenset(
        {CertificateStatus.EXPIRED, CertificateStatus.REVOKED},
    ),
    CertificateStatus.EXPIRED: frozenset({CertificateStatus.REVOKED}),
    CertificateStatus.REVOKED: frozenset(),
}


def assert_transition(
    current: CAStatus | CertificateStatus,
    target: CAStatus | CertificateStatus,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The current status of the resource.
    target:
        The desired new status.
    table:
        :data:`CA_TRANSITIONS` or :data:`CERTIFICATE_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown status {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(
            msg,
        )


def log_transition(
    resource_type: str,
    resource_id,
    from_status,
    to_status,
    *,
    reason: str | None = None,
) -> None:
    """Emit a structured log entry for a state transition.

    Parameters
    ----------
    resource_type:
        ``"ca"`` or ``"certificate"``.
    resource_id:
        The UUID or serial number of the resource.
    from_status:
        The previous status value.
    to_status:
        The new status value.
    reason:
        Optional human-readable reason for the transition.

    """
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_status": from_status.value if hasattr(from_status, "value") else str(from_status),
        "to_status": to_status.value if hasattr(to_status, "value") else str(to_status),
    }
    if reason:
        extra["reason"] = reason
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_id,
        extra["from_status"],
        extra["to_status"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
