"""Abstract base class for PRIVCA audit hooks.

All custom hooks must inherit from :class:`Hook` and override the
event methods they are interested in.  Unimplemented methods are
no-ops by default.

Every event context carries the same top-level keys: ``action`` (the
event name), ``actor``, ``description``, ``metadata`` (event-specific
dict) and ``timestamp`` (ISO 8601, UTC).

Usage::

    from privca.hooks import Hook

    class MySiemHook(Hook):
        def on_certificate_issuance(self, ctx: dict) -> None:
            send_to_siem(ctx)
"""

from __future__ import annotations

import abc


class Hook(abc.ABC):  # noqa: B024
    """Base class for all PRIVCA audit hooks.

    Parameters
    ----------
    config:
        Optional passthrough configuration from the hook entry's
        ``config`` dict in the PRIVCA config file.

    """

    def __init__(self, config: dict | None = None) -> None:
        self.config = config or {}

    @classmethod
    def validate_config(cls, config: dict) -> None:
        """Validate hook-specific configuration at load time.

        Override in subclasses to reject invalid config before the
        hook is instantiated.  Raise :class:`ValueError` if *config*
        is not acceptable.

        The default implementation is a no-op.
        """

    # -- CA events --------------------------------------------------------

    def on_ca_initialization(self, ctx: dict) -> None:
        """Called after a CA key pair and CSR are generated.

        Metadata keys: ``ca_id``, ``name``, ``subject_dn``,
        ``key_algorithm``.
        """

    def on_ca_activation(self, ctx: dict) -> None:
        """Called after a CA becomes ACTIVE (self-sign or upload).

        Metadata keys: ``ca_id``, ``method``, ``valid_to``,
        ``chain_length``.
        """

    def on_ca_upload_rejected(self, ctx: dict) -> None:
        """Called when an uploaded CA certificate fails validation.

        Metadata keys: ``ca_id``, ``reason``.
        """

    def on_ca_deletion(self, ctx: dict) -> None:
        """Called after a CA and its dependents are deleted.

        Metadata keys: ``ca_id``, ``name``.
        """

    # -- Certificate events -----------------------------------------------

    def on_certificate_issuance(self, ctx: dict) -> None:
        """Called after a certificate is issued.

        Metadata keys: ``ca_id``, ``certificate_id``, ``serial_number``,
        ``subject_dn``, ``certificate_type``, ``valid_to``.
        """

    def on_certificate_revocation(self, ctx: dict) -> None:
        """Called after a certificate is revoked.

        Metadata keys: ``ca_id``, ``serial_number``, ``reason``.
        """

    def on_certificate_validation(self, ctx: dict) -> None:
        """Called after a certificate validation attempt.

        Metadata keys: ``serial_number``, ``is_valid``, ``issues``,
        ``cached``.
        """

    def on_certificate_export(self, ctx: dict) -> None:
        """Called when a certificate is exported.

        Metadata keys: ``serial_number``, ``format``,
        ``includes_private_key``.
        """

    # -- CRL events -------------------------------------------------------

    def on_crl_generation(self, ctx: dict) -> None:
        """Called after a CRL is generated and persisted.

        Metadata keys: ``ca_id``, ``crl_number``, ``mode``,
        ``revoked_count``, ``next_update``.
        """
