"""Unit tests for privca.store.postgres: PostgresStore with mocked persistence."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from unittest.mock import DEFAULT, MagicMock, patch

import pytest
from psycopg import errors as pg_errors

from privca.ca.base import AlreadyRevoked, CANotFound, CertificateNotFound, ValidationError
from privca.core.types import CRLMode, RevocationReason
from privca.models import RevocationRecord
from privca.store.postgres import PostgresStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@dataclass
class _Env:
    store: PostgresStore
    repos: dict
    uow: MagicMock
    uow_cls: MagicMock


@pytest.fixture()
def env():
    with (
        patch.multiple(
            "privca.store.postgres",
            CAIdentityRepository=DEFAULT,
            CertificateRepository=DEFAULT,
            RevocationRepository=DEFAULT,
            CRLRepository=DEFAULT,
        ) as repos,
        patch("privca.store.postgres.UnitOfWork") as uow_cls,
    ):
        uow = MagicMock()
        uow_cls.return_value.__enter__.return_value = uow
        uow_cls.return_value.__exit__.return_value = False
        yield _Env(PostgresStore(MagicMock()), repos, uow, uow_cls)


def _repo(env: _Env, name: str) -> MagicMock:
    return env.repos[name].return_value


def _record() -> RevocationRecord:
    return RevocationRecord(
        id=uuid.uuid4(),
        serial_number="AB" * 16,
        certificate_id=uuid.uuid4(),
        ca_id=uuid.uuid4(),
        revocation_date=datetime.now(UTC),
        reason=RevocationReason.KEY_COMPROMISE,
        revoked_by="ops",
    )


# ---------------------------------------------------------------------------
# Delegation to repositories
# ---------------------------------------------------------------------------


class TestRepositoryDelegation:
    def test_ca_reads(self, env):
        ca_id = uuid.uuid4()
        env.store.get_ca(ca_id)
        _repo(env, "CAIdentityRepository").find_by_id.assert_called_once_with(ca_id)
        env.store.list_cas()
        _repo(env, "CAIdentityRepository").find_by_status.assert_called_once_with(None)

    def test_find_certificate_routes_on_ca(self, env):
        certs = _repo(env, "CertificateRepository")
        ca_id = uuid.uuid4()
        env.store.find_certificate("AA")
        certs.find_by_serial.assert_called_once_with("AA")
        env.store.find_certificate("AA", ca_id)
        certs.find_by_ca_and_serial.assert_called_once_with(ca_id, "AA")

    def test_duplicate_serial_is_validation_error(self, env):
        certs = _repo(env, "CertificateRepository")
        certs.create.side_effect = pg_errors.UniqueViolation("duplicate key")
        cert = MagicMock(serial_number="AA", ca_id=uuid.uuid4())
        with pytest.raises(ValidationError, match="already issued"):
            env.store.add_certificate(cert)

    def test_crl_reads(self, env):
        crls = _repo(env, "CRLRepository")
        ca_id = uuid.uuid4()
        env.store.latest_crl(ca_id, CRLMode.DELTA)
        crls.find_latest.assert_called_once_with(ca_id, CRLMode.DELTA)
        env.store.get_crl(ca_id, 3)
        crls.find_by_number.assert_called_once_with(ca_id, 3)

    def test_get_revocation_scoped_to_ca(self, env):
        ca_id = uuid.uuid4()
        env.store.get_revocation("AA", ca_id)
        _repo(env, "RevocationRepository").find_by_serial.assert_called_once_with("AA", ca_id)

    def test_revocations_for_crl(self, env):
        ca_id = uuid.uuid4()
        cutoff = datetime.now(UTC) - timedelta(days=1)
        env.store.revocations_for_crl(ca_id, revoked_after=cutoff)
        _repo(env, "RevocationRepository").find_for_crl.assert_called_once_with(
            ca_id,
            valid_after=None,
            revoked_after=cutoff,
        )


# ---------------------------------------------------------------------------
# Transactional operations
# ---------------------------------------------------------------------------


class TestRevoke:
    def test_success(self, env):
        record = _record()
        revocations = _repo(env, "RevocationRepository")
        env.uow.fetch_one.return_value = {"id": record.certificate_id}
        env.uow.insert.return_value = {"row": 1}
        revocations._row_to_entity.return_value = record

        assert env.store.revoke(record) is record
        sql = env.uow.fetch_one.call_args.args[0]
        assert "status <> 'REVOKED'" in sql
        assert env.uow.insert.call_args.args[0] == "revocation_records"

    def test_already_revoked(self, env):
        record = _record()
        env.uow.fetch_one.side_effect = [None, {"id": record.certificate_id}]
        with pytest.raises(AlreadyRevoked):
            env.store.revoke(record)
        env.uow.insert.assert_not_called()

    def test_missing_certificate(self, env):
        env.uow.fetch_one.side_effect = [None, None]
        with pytest.raises(CertificateNotFound):
            env.store.revoke(_record())

    def test_unique_violation_maps_to_already_revoked(self, env):
        env.uow.fetch_one.return_value = {"id": 1}
        env.uow.insert.side_effect = pg_errors.UniqueViolation("duplicate key")
        with pytest.raises(AlreadyRevoked):
            env.store.revoke(_record())


class TestAllocateCrl:
    def test_number_comes_from_locked_counter(self, env):
        ca_id = uuid.uuid4()
        env.uow.fetch_one.return_value = {"crl_number": 5}
        built = MagicMock()
        build = MagicMock(return_value=built)

        assert env.store.allocate_crl(ca_id, build) is built
        build.assert_called_once_with(5)
        sql, params = env.uow.fetch_one.call_args.args
        assert sql.startswith("UPDATE ca_identities SET crl_number = crl_number + 1")
        assert params == (ca_id,)
        assert env.uow.insert.call_args.args[0] == "crl_issuances"

    def test_unknown_ca(self, env):
        env.uow.fetch_one.return_value = None
        build = MagicMock()
        with pytest.raises(CANotFound):
            env.store.allocate_crl(uuid.uuid4(), build)
        build.assert_not_called()

    def test_build_failure_rolls_back(self, env):
        env.uow.fetch_one.return_value = {"crl_number": 2}
        with pytest.raises(RuntimeError):
            env.store.allocate_crl(uuid.uuid4(), MagicMock(side_effect=RuntimeError("sign")))
        exc_type = env.uow_cls.return_value.__exit__.call_args.args[0]
        assert exc_type is RuntimeError
        env.uow.insert.assert_not_called()


class TestCaWrites:
    def test_delete_cascade(self, env):
        env.uow.execute.side_effect = [2, 1, 3, 1]
        assert env.store.delete_ca_cascade(uuid.uuid4()) is True
        tables = [c.args[0].split()[2] for c in env.uow.execute.call_args_list]
        assert tables == [
            "crl_issuances",
            "revocation_records",
            "issued_certificates",
            "ca_identities",
        ]

    def test_delete_cascade_missing(self, env):
        env.uow.execute.side_effect = [0, 0, 0, 0]
        assert env.store.delete_ca_cascade(uuid.uuid4()) is False

    def test_update_ca_keeps_counter_and_creation(self, env):
        cas = _repo(env, "CAIdentityRepository")
        ca = MagicMock(id=uuid.uuid4())
        cas._entity_to_row.return_value = {
            "id": ca.id,
            "created_at": "c",
            "crl_number": 9,
            "status": "ACTIVE",
        }
        env.uow.update_where.return_value = {"id": ca.id}
        env.store.update_ca(ca)

        table, values, where = env.uow.update_where.call_args.args
        assert table == "ca_identities"
        assert set(values) == {"status", "updated_at"}
        assert where == {"id": ca.id}

    def test_update_missing_ca(self, env):
        cas = _repo(env, "CAIdentityRepository")
        cas._entity_to_row.return_value = {"id": 1, "created_at": "c", "crl_number": 0}
        env.uow.update_where.return_value = None
        with pytest.raises(CANotFound):
            env.store.update_ca(MagicMock(id=1))
