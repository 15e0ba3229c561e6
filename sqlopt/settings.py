from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Journal
    db_path: str = os.getenv("SQLOPT_DB_PATH", "sqlopt.db")
    culture: str = os.getenv("SQLOPT_CULTURE", "en-US")

    # SQL Server login (SQL authentication)
    sql_user: str | None = os.getenv("SQLOPT_SQL_USER")
    sql_password: str | None = os.getenv("SQLOPT_SQL_PASSWORD")
    # 0 means "use the instance name / default port"
    sql_port: int = _env_int("SQLOPT_SQL_PORT", 0)
    login_timeout_s: int = _env_int("SQLOPT_LOGIN_TIMEOUT_S", 15)

    # Restart
    restart_backend: str = os.getenv("SQLOPT_RESTART_BACKEND", "docker")  # docker|systemd
    docker_host: str | None = os.getenv("SQLOPT_DOCKER_HOST")
    container_name_template: str = os.getenv("SQLOPT_CONTAINER_NAME", "mssql-{instance}")
    systemd_unit_template: str = os.getenv("SQLOPT_SYSTEMD_UNIT", "mssql-server")
    restart_poll_interval_s: int = _env_int("SQLOPT_RESTART_POLL_INTERVAL_S", 2)

    # HTTP surface
    api_user: str = os.getenv("SQLOPT_API_USER", "admin")
    api_password: str = os.getenv("SQLOPT_API_PASSWORD", "change-me")
    allow_apply: bool = _env_bool("SQLOPT_ALLOW_APPLY", True)


settings = Settings()
