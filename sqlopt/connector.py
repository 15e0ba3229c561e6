from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pymssql

from .settings import settings

DEFAULT_INSTANCE = "MSSQLSERVER"

_OPTIONS_SQL = """
SELECT name,
       CAST(value AS int) AS value,
       CAST(is_dynamic AS bit) AS is_dynamic,
       CAST(is_advanced AS bit) AS is_advanced
FROM sys.configurations
ORDER BY configuration_id
"""

_SERVER_SQL = """
SELECT CAST(SERVERPROPERTY('IsClustered') AS int) AS is_clustered,
       CAST(SERVERPROPERTY('ComputerNamePhysicalNetBIOS') AS nvarchar(128)) AS physical_name
"""

SHOW_ADVANCED = "show advanced options"


class InstanceConnectionError(Exception):
    """Raised when a session to an instance cannot be opened or used."""


class ConfigurationCommitError(Exception):
    """Raised when the instance rejects staged option values."""


@dataclass
class ConfigOption:
    display_name: str
    configured_value: int
    is_dynamic: bool
    is_advanced: bool = False
    assigned: bool = field(default=False, compare=False)

    def assign(self, value: int) -> None:
        """Stage a new configured value; nothing is written until the session commits."""
        self.configured_value = int(value)
        self.assigned = True


def target_for(server_name: str, instance_name: str, port: int = 0) -> str:
    """pymssql ``server`` argument for an instance.

    The default instance is addressed by host name alone, named instances as
    ``host\\instance`` (resolved through SQL Browser). An explicit port wins
    over the instance name.
    """
    if port:
        return server_name
    if not instance_name or instance_name.upper() == DEFAULT_INSTANCE:
        return server_name
    return f"{server_name}\\{instance_name}"


def _commit_batch(options: list[ConfigOption], show_advanced: bool) -> tuple[str, tuple[Any, ...]]:
    """Build one sp_configure/RECONFIGURE batch for the staged options."""
    stmts: list[str] = []
    params: list[Any] = []
    needs_advanced = not show_advanced and any(o.is_advanced for o in options)
    if needs_advanced:
        stmts.append(f"EXEC sys.sp_configure N'{SHOW_ADVANCED}', 1; RECONFIGURE;")
    for o in options:
        stmts.append("EXEC sys.sp_configure %s, %d; RECONFIGURE;")
        params.extend([o.display_name, o.configured_value])
    if needs_advanced:
        stmts.append(f"EXEC sys.sp_configure N'{SHOW_ADVANCED}', 0; RECONFIGURE;")
    return "\n".join(stmts), tuple(params)


class InstanceSession:
    """Open session to one instance, exposing its configuration options."""

    def __init__(self, server_name: str, instance_name: str, conn: Any):
        self.server_name = server_name
        self.instance_name = instance_name
        self._conn = conn
        self.options: list[ConfigOption] = []
        self.is_clustered = False
        self.physical_name: str | None = None
        self.refresh()

    def refresh(self) -> None:
        try:
            cur = self._conn.cursor(as_dict=True)
            cur.execute(_OPTIONS_SQL)
            self.options = [
                ConfigOption(
                    display_name=row["name"],
                    configured_value=int(row["value"]),
                    is_dynamic=bool(row["is_dynamic"]),
                    is_advanced=bool(row["is_advanced"]),
                )
                for row in cur.fetchall()
            ]
            cur.execute(_SERVER_SQL)
            row = cur.fetchone() or {}
        except pymssql.Error as e:
            raise InstanceConnectionError(f"Failed to query {self.server_name}\\{self.instance_name}: {e}") from e
        self.is_clustered = bool(row.get("is_clustered"))
        self.physical_name = row.get("physical_name")

    def commit(self) -> None:
        """Persist all assigned options in one batch."""
        staged = [o for o in self.options if o.assigned]
        if not staged:
            return
        show_advanced = any(o.display_name == SHOW_ADVANCED and o.configured_value == 1 for o in self.options)
        sql, params = _commit_batch(staged, show_advanced)
        # sp_configure/RECONFIGURE are not allowed inside a user transaction;
        # the connection is opened in autocommit mode.
        try:
            self._conn.cursor().execute(sql, params)
        except pymssql.Error as e:
            names = ", ".join(o.display_name for o in staged)
            raise ConfigurationCommitError(f"Instance rejected new value for {names}: {e}") from e
        for o in staged:
            o.assigned = False

    def close(self) -> None:
        self._conn.close()


def connect(server_name: str, instance_name: str) -> InstanceSession:
    """Open a session to ``server_name``/``instance_name`` using the configured login."""
    target = target_for(server_name, instance_name, settings.sql_port)
    kwargs: dict[str, Any] = {
        "server": target,
        "database": "master",
        "login_timeout": settings.login_timeout_s,
        "autocommit": True,
    }
    if settings.sql_port:
        kwargs["port"] = str(settings.sql_port)
    if settings.sql_user:
        kwargs["user"] = settings.sql_user
        kwargs["password"] = settings.sql_password or ""
    try:
        conn = pymssql.connect(**kwargs)
    except pymssql.Error as e:
        raise InstanceConnectionError(f"Failed to connect to {target}: {e}") from e
    try:
        return InstanceSession(server_name, instance_name, conn)
    except InstanceConnectionError:
        conn.close()
        raise
