"""Tests for privca.server.wsgi: the WSGI bootstrap module."""

from __future__ import annotations

import importlib
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest


def _import_wsgi(backend: str):
    config = MagicMock()
    config.settings = SimpleNamespace(
        logging="logging-settings",
        database="database-settings",
        store=SimpleNamespace(backend=backend),
    )
    sys.modules.pop("privca.server.wsgi", None)
    with (
        patch("privca.config.PrivcaConfig", return_value=config) as config_cls,
        patch("privca.logging.configure_logging") as configure,
        patch("privca.db.init_database") as init_db,
        patch("privca.app.create_app") as create_app,
    ):
        module = importlib.import_module("privca.server.wsgi")
    sys.modules.pop("privca.server.wsgi", None)
    return module, config_cls, configure, init_db, create_app, config


class TestWsgiBootstrap:
    def test_postgres_backend(self, monkeypatch):
        monkeypatch.setenv("PRIVCA_CONFIG", "/etc/privca/config.yaml")
        module, config_cls, configure, init_db, create_app, config = _import_wsgi("postgres")

        config_cls.assert_called_once_with(config_file="/etc/privca/config.yaml")
        configure.assert_called_once_with("logging-settings")
        init_db.assert_called_once_with("database-settings")
        create_app.assert_called_once_with(config=config, database=init_db.return_value)
        assert module.app is create_app.return_value

    def test_memory_backend_skips_database(self, monkeypatch):
        monkeypatch.setenv("PRIVCA_CONFIG", "config.yaml")
        _module, _cls, _configure, init_db, create_app, config = _import_wsgi("memory")

        init_db.assert_not_called()
        create_app.assert_called_once_with(config=config, database=None)

    def test_missing_env_exits(self, monkeypatch):
        monkeypatch.delenv("PRIVCA_CONFIG", raising=False)
        sys.modules.pop("privca.server.wsgi", None)
        with pytest.raises(SystemExit):
            importlib.import_module("privca.server.wsgi")
        sys.modules.pop("privca.server.wsgi", None)
