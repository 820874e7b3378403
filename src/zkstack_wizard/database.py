"""
Server-level access to the relational store.

Every operation opens its own short-lived connection and closes it before
returning; nothing holds a connection across pipeline steps.
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit, urlunsplit

import psycopg
from psycopg import sql
from psycopg.conninfo import conninfo_to_dict, make_conninfo

from zkstack_wizard.instances import validate_instance_name

logger = logging.getLogger(__name__)


def isolated_database_name(instance: str, l1_network: str) -> str:
    """
    Deterministic database name for an instance on an L1 network.

    The instance name is used as is, so two instances never map to the same
    database.

    Raises:
        ValueError: If ``instance`` is not a valid instance name
    """
    return f"{validate_instance_name(instance)}_{l1_network}"


class DatabaseServer:
    """
    A Postgres server that hosts one isolated database per instance.

    Args:
        server_url: URL or conninfo string for the server (no database, or
            the maintenance database)
        connect_timeout: Seconds to wait for each connection
    """

    def __init__(self, server_url: str, connect_timeout: int = 2):
        self.server_url = server_url
        self.connect_timeout = connect_timeout

    @property
    def display_name(self) -> str:
        """Host:port of the server, without credentials."""
        params = conninfo_to_dict(self.server_url)
        return f"postgres at {params.get('host', 'localhost')}:{params.get('port', 5432)}"

    def database_url(self, database: str) -> str:
        """
        Connection string for ``database`` on this server.

        URL-style server addresses stay URLs (the form the hyperchain server
        expects); key=value conninfo strings get ``dbname`` substituted.
        """
        if "://" in self.server_url:
            parts = urlsplit(self.server_url)
            return urlunsplit(parts._replace(path=f"/{database}"))
        return make_conninfo(self.server_url, dbname=database)

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(
            self.server_url,
            autocommit=True,
            connect_timeout=self.connect_timeout,
        )

    def probe(self) -> bool:
        """True if the server accepts connections."""
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1")
            return True
        except psycopg.OperationalError as e:
            logger.debug(f"Store probe failed: {e}")
            return False

    def database_exists(self, name: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM pg_database WHERE datname = %s", (name,)
            ).fetchone()
        return row is not None

    def create_database(self, name: str) -> None:
        """Issue CREATE DATABASE; runs outside a transaction as Postgres requires."""
        with self._connect() as conn:
            conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name)))
        logger.info(f"Created database {name}")
