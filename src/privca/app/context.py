"""Dependency injection container for PRIVCA.

Created once during application startup and stored on the Flask app
via ``app.extensions["container"]``.  Accessible from any request
context with :func:`get_container`.

Usage::

    from privca.app.context import get_container

    c = get_container()
    crl = c.crl.latest_crl(ca_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app

from privca.ca.crl import CRLGenerator
from privca.ca.export import CertificateExporter
from privca.ca.issuance import IssuanceEngine
from privca.ca.lifecycle import CALifecycleManager
from privca.ca.vault import KeyVault
from privca.hooks.audit import AuditLogHook, AuditTrail
from privca.hooks.registry import HookRegistry
from privca.services.ocsp import OCSPResponder
from privca.services.validation import ChainValidator

if TYPE_CHECKING:
    from pypgkit import Database

    from privca.config.settings import PrivcaSettings
    from privca.store.base import PKIStore


class Container:
    """Application-wide dependency container.

    Wires the PKI engine components around one :class:`PKIStore`.  All
    components share the same vault, audit trail and hook registry.

    Raises
    ------
    ConfigurationError
        From :class:`KeyVault` when no master key is configured in
        production.

    """

    def __init__(
        self,
        settings: PrivcaSettings,
        store: PKIStore,
        *,
        db: Database | None = None,
        hook_registry: HookRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.db = db

        self.hook_registry = hook_registry or HookRegistry(settings.hooks)
        if settings.logging.audit.enabled:
            self.hook_registry.register(AuditLogHook())
        self.audit = AuditTrail(self.hook_registry)

        self.vault = KeyVault(settings.vault, settings.environment)
        self.lifecycle = CALifecycleManager(store, self.vault, settings, self.audit)
        self.issuance = IssuanceEngine(store, self.vault, self.lifecycle, settings, self.audit)
        self.crl = CRLGenerator(store, self.lifecycle, settings, self.audit)
        self.exporter = CertificateExporter(store, self.vault, self.audit)
        self.validator = ChainValidator(store, settings.validation, self.audit)

        # OCSP responder (optional)
        self.ocsp: OCSPResponder | None = None
        if settings.ocsp.enabled:
            self.ocsp = OCSPResponder(store, self.lifecycle, settings)


def get_container() -> Container:
    """Return the :class:`Container` from the current Flask app.

    Raises :class:`RuntimeError` if no store was available when
    ``create_app`` ran.
    """
    container = current_app.extensions.get("container")
    if container is None:
        msg = (
            "Dependency container not available -- "
            "was a store or database supplied to create_app()?"
        )
        raise RuntimeError(msg)
    return container
