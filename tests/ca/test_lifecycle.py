"""Tests for privca.ca.lifecycle: CALifecycleManager."""

from __future__ import annotations

import dataclasses
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import AuthorityInformationAccessOID
from tests.conftest import audit_events

from privca.ca.base import CANotActive, CANotFound, ValidationError
from privca.ca.cert_utils import to_pem
from privca.ca.lifecycle import SelfSignOptions, resolve_url
from privca.core.types import CAStatus, KeyAlgorithm

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sign_csr(
    lifecycle,
    issuer_ca,
    csr_pem: str,
    *,
    ca: bool = True,
    key_cert_sign: bool = True,
    not_before: datetime | None = None,
    days: int = 365,
) -> x509.Certificate:
    """Sign *csr_pem* with *issuer_ca*, as an external parent CA would."""
    issuer_cert, issuer_key = lifecycle.signing_material(issuer_ca)
    csr = x509.load_pem_x509_csr(csr_pem.encode("ascii"))
    start = not_before or datetime.now(UTC) - timedelta(minutes=1)
    return (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(issuer_cert.subject)
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(start + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=key_cert_sign,
                crl_sign=key_cert_sign,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(issuer_key, hashes.SHA256())
    )


@pytest.fixture()
def pending(lifecycle):
    return lifecycle.initialize_ca(
        "Issuing CA",
        "O=Example, CN=Issuing CA",
        "ECDSA",
        actor="admin",
    )


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitialize:
    def test_creates_initializing_identity(self, lifecycle, store, pending):
        ca = store.get_ca(pending.ca_id)
        assert ca.status == CAStatus.INITIALIZING
        assert ca.key_algorithm == KeyAlgorithm.ECDSA
        assert ca.curve == "P-256"
        assert ca.certificate_pem is None
        assert ca.csr_pem == pending.csr_pem

    def test_private_key_stored_encrypted(self, store, vault, pending):
        ca = store.get_ca(pending.ca_id)
        assert "PRIVATE KEY" not in ca.encrypted_private_key.to_json()
        assert vault.decrypt(ca.encrypted_private_key) == pending.private_key_pem

    def test_csr_carries_subject_and_verifies(self, pending):
        csr = x509.load_pem_x509_csr(pending.csr_pem.encode("ascii"))
        assert csr.is_signature_valid
        assert csr.subject.rfc4514_string() == "CN=Issuing CA,O=Example"

    def test_rsa_with_size(self, lifecycle, store):
        init = lifecycle.initialize_ca("RSA CA", "CN=RSA CA", "RSA", 3072, actor="admin")
        ca = store.get_ca(init.ca_id)
        assert ca.key_algorithm == KeyAlgorithm.RSA
        assert ca.key_size == 3072

    def test_blank_name_rejected(self, lifecycle):
        with pytest.raises(ValidationError, match="name"):
            lifecycle.initialize_ca("  ", "CN=X", actor="admin")

    def test_bad_dn_rejected(self, lifecycle, store):
        with pytest.raises(ValidationError):
            lifecycle.initialize_ca("X", "not a dn", actor="admin")
        assert store.list_cas() == []

    def test_audited(self, registry, pending):
        assert audit_events(registry) == ["ca.initialization"]
        context = registry.dispatch.call_args.args[1]
        assert context["actor"] == "admin"
        assert context["metadata"]["ca_id"] == str(pending.ca_id)


# ---------------------------------------------------------------------------
# Self-signing
# ---------------------------------------------------------------------------


class TestSelfSign:
    def test_activates_with_root_extensions(self, lifecycle, pending):
        pem = lifecycle.self_sign(pending.ca_id, 30, actor="admin")
        cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
        ca = lifecycle.get_ca(pending.ca_id)

        assert ca.status == CAStatus.ACTIVE
        assert ca.certificate_pem == pem
        assert ca.valid_to == cert.not_valid_after_utc
        assert cert.subject == cert.issuer
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints)
        assert bc.critical
        assert bc.value.ca
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert usage.key_cert_sign
        assert usage.crl_sign
        assert cert.verify_directly_issued_by(cert) is None

    def test_validity_days(self, lifecycle, pending):
        pem = lifecycle.self_sign(pending.ca_id, 30, actor="admin")
        cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
        span = cert.not_valid_after_utc - cert.not_valid_before_utc
        assert span == timedelta(days=30)

    def test_configured_urls_embedded(self, lifecycle, pending):
        pem = lifecycle.self_sign(pending.ca_id, actor="admin")
        cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
        cdp = cert.extensions.get_extension_for_class(x509.CRLDistributionPoints).value
        assert cdp[0].full_name[0].value == f"http://pki.example.test/crl/{pending.ca_id}/latest"
        aia = cert.extensions.get_extension_for_class(x509.AuthorityInformationAccess).value
        assert aia[0].access_method == AuthorityInformationAccessOID.OCSP
        assert aia[0].access_location.value == "http://pki.example.test/ocsp"

    def test_options_override_urls_and_path_length(self, lifecycle, pending):
        options = SelfSignOptions(
            path_length=1,
            crl_distribution_url="http://other.test/root.crl",
        )
        pem = lifecycle.self_sign(pending.ca_id, options=options, actor="admin")
        cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.path_length == 1
        cdp = cert.extensions.get_extension_for_class(x509.CRLDistributionPoints).value
        assert cdp[0].full_name[0].value == "http://other.test/root.crl"
        assert lifecycle.get_ca(pending.ca_id).crl_distribution_url == "http://other.test/root.crl"

    def test_second_self_sign_rejected(self, lifecycle, pending):
        lifecycle.self_sign(pending.ca_id, actor="admin")
        with pytest.raises(ValidationError, match="only INITIALIZING"):
            lifecycle.self_sign(pending.ca_id, actor="admin")

    @pytest.mark.parametrize("days", [0, -5])
    def test_non_positive_validity_rejected(self, lifecycle, pending, days):
        with pytest.raises(ValidationError, match="positive"):
            lifecycle.self_sign(pending.ca_id, days, actor="admin")
        assert lifecycle.get_ca(pending.ca_id).status == CAStatus.INITIALIZING

    def test_ed25519_root(self, lifecycle):
        init = lifecycle.initialize_ca("Ed CA", "CN=Ed CA", "ED25519", actor="admin")
        pem = lifecycle.self_sign(init.ca_id, actor="admin")
        cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
        assert cert.signature_hash_algorithm is None

    def test_audited(self, registry, lifecycle, pending):
        lifecycle.self_sign(pending.ca_id, actor="admin")
        assert audit_events(registry) == ["ca.initialization", "ca.activation"]
        metadata = registry.dispatch.call_args.args[1]["metadata"]
        assert metadata["method"] == "self_sign"

    def test_unknown_ca(self, lifecycle):
        with pytest.raises(CANotFound):
            lifecycle.self_sign(uuid.uuid4(), actor="admin")


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class TestUpload:
    def test_accepts_parent_signed_certificate(self, lifecycle, active_ca, pending):
        cert = _sign_csr(lifecycle, active_ca, pending.csr_pem)
        ca = lifecycle.upload_certificate(
            pending.ca_id,
            to_pem(cert),
            active_ca.certificate_pem,
            actor="admin",
        )
        assert ca.status == CAStatus.ACTIVE
        assert ca.certificate_pem == to_pem(cert)
        assert ca.certificate_chain_pem == active_ca.certificate_pem
        assert ca.valid_to == cert.not_valid_after_utc

    def test_bundle_order_does_not_matter(self, lifecycle, active_ca, pending):
        cert = _sign_csr(lifecycle, active_ca, pending.csr_pem)
        bundle = active_ca.certificate_pem + to_pem(cert)
        ca = lifecycle.upload_certificate(pending.ca_id, bundle, actor="admin")
        assert ca.certificate_pem == to_pem(cert)
        assert ca.certificate_chain_pem == active_ca.certificate_pem

    def test_non_ca_certificate_rejected_and_state_unchanged(
        self,
        lifecycle,
        store,
        registry,
        active_ca,
        pending,
    ):
        cert = _sign_csr(lifecycle, active_ca, pending.csr_pem, ca=False)
        before = store.get_ca(pending.ca_id)
        with pytest.raises(ValidationError, match="not a CA certificate"):
            lifecycle.upload_certificate(pending.ca_id, to_pem(cert), actor="admin")
        assert store.get_ca(pending.ca_id) == before
        assert audit_events(registry)[-1] == "ca.upload_rejected"

    def test_missing_key_cert_sign_rejected(self, lifecycle, active_ca, pending):
        cert = _sign_csr(lifecycle, active_ca, pending.csr_pem, key_cert_sign=False)
        with pytest.raises(ValidationError, match="keyCertSign"):
            lifecycle.upload_certificate(pending.ca_id, to_pem(cert), actor="admin")

    def test_not_yet_valid_rejected(self, lifecycle, active_ca, pending):
        cert = _sign_csr(
            lifecycle,
            active_ca,
            pending.csr_pem,
            not_before=datetime.now(UTC) + timedelta(days=2),
        )
        with pytest.raises(ValidationError, match="not currently valid"):
            lifecycle.upload_certificate(pending.ca_id, to_pem(cert), actor="admin")

    def test_foreign_key_rejected(self, lifecycle, active_ca, pending):
        other = lifecycle.initialize_ca("Other", "CN=Other", "ECDSA", actor="admin")
        cert = _sign_csr(lifecycle, active_ca, other.csr_pem)
        with pytest.raises(ValidationError, match="public key does not match"):
            lifecycle.upload_certificate(pending.ca_id, to_pem(cert), actor="admin")
        assert lifecycle.get_ca(pending.ca_id).status == CAStatus.INITIALIZING

    def test_garbage_rejected(self, lifecycle, pending):
        with pytest.raises(ValidationError, match="No valid PEM certificate"):
            lifecycle.upload_certificate(pending.ca_id, "not a certificate", actor="admin")

    def test_active_ca_cannot_be_re_activated(self, lifecycle, active_ca):
        with pytest.raises(ValidationError, match="only INITIALIZING"):
            lifecycle.upload_certificate(active_ca.id, active_ca.certificate_pem, actor="admin")


# ---------------------------------------------------------------------------
# Reads, expiry, deletion
# ---------------------------------------------------------------------------


class TestReads:
    def test_get_unknown_ca(self, lifecycle):
        with pytest.raises(CANotFound):
            lifecycle.get_ca(uuid.uuid4())

    def test_list_filters_by_status(self, lifecycle, active_ca, pending):
        assert [ca.id for ca in lifecycle.active_cas()] == [active_ca.id]
        assert [ca.id for ca in lifecycle.list_cas(CAStatus.INITIALIZING)] == [pending.ca_id]
        assert len(lifecycle.list_cas()) == 2

    def test_signing_material_requires_active(self, lifecycle, pending):
        with pytest.raises(CANotActive, match="INITIALIZING"):
            lifecycle.signing_material(pending.ca_id)

    def test_expiry_observed_on_read(self, lifecycle, store, active_ca):
        store.update_ca(
            dataclasses.replace(active_ca, valid_to=datetime.now(UTC) - timedelta(seconds=1)),
        )
        assert lifecycle.get_ca(active_ca.id).status == CAStatus.EXPIRED
        assert store.get_ca(active_ca.id).status == CAStatus.EXPIRED
        with pytest.raises(CANotActive):
            lifecycle.signing_material(active_ca.id)

    def test_status_summary(self, lifecycle, active_ca, pending, issued):
        summary = lifecycle.status_summary()
        assert summary["total"] == 2
        assert summary["by_status"] == {"INITIALIZING": 1, "ACTIVE": 1, "EXPIRED": 0}
        assert summary["certificates"]["ACTIVE"] == 1
        assert summary["next_expiry"]["ca_id"] == str(active_ca.id)

    def test_resolve_url(self):
        ca_id = uuid.uuid4()
        assert resolve_url("http://x.test/{ca_id}.crl", ca_id) == f"http://x.test/{ca_id}.crl"
        assert resolve_url(None, ca_id) is None


class TestDelete:
    def test_cascades_to_certificates_and_crls(
        self,
        lifecycle,
        store,
        crl_generator,
        active_ca,
        issued,
    ):
        crl_generator.generate_crl(active_ca.id)
        lifecycle.delete_ca(active_ca.id, actor="admin")
        assert store.get_ca(active_ca.id) is None
        assert store.find_certificate(issued.serial_number) is None
        assert store.latest_crl(active_ca.id) is None

    def test_unknown_ca(self, lifecycle):
        with pytest.raises(CANotFound):
            lifecycle.delete_ca(uuid.uuid4(), actor="admin")

    def test_audited(self, lifecycle, registry, active_ca):
        lifecycle.delete_ca(active_ca.id, actor="admin")
        assert audit_events(registry)[-1] == "ca.deletion"
