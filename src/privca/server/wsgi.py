"""WSGI entry point for external servers (gunicorn, uWSGI, etc.).

The config file path is read from the ``PRIVCA_CONFIG`` environment
variable.

Example::

    export PRIVCA_CONFIG=/etc/privca/config.yaml
    gunicorn "privca.server.wsgi:app"
"""

from __future__ import annotations

import os
import sys

_config_path = os.environ.get("PRIVCA_CONFIG")
if _config_path is None:
    sys.exit("PRIVCA_CONFIG is not set")

# Bootstrap the singleton before anything else imports it.
from privca.config import PrivcaConfig  # noqa: E402

_config = PrivcaConfig(config_file=_config_path)

from privca.logging import configure_logging  # noqa: E402

configure_logging(_config.settings.logging)

_db = None
if _config.settings.store.backend == "postgres":
    from privca.db import init_database  # noqa: E402

    _db = init_database(_config.settings.database)

from privca.app import create_app  # noqa: E402

app = create_app(config=_config, database=_db)
