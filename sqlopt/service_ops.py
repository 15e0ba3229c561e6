from __future__ import annotations

import subprocess
import time
from typing import Callable

import docker
from docker.errors import DockerException, NotFound

from . import connector
from .connector import InstanceConnectionError
from .settings import settings


class RestartError(Exception):
    """The instance could not be restarted."""


class RestartTimeout(RestartError):
    """The instance did not come back online within the timeout."""


def _client() -> docker.DockerClient:
    if settings.docker_host:
        return docker.DockerClient(base_url=settings.docker_host)
    return docker.from_env()


def container_name_for(server_name: str, instance_name: str) -> str:
    return settings.container_name_template.format(server=server_name.lower(), instance=instance_name.lower())


def systemd_unit_for(server_name: str, instance_name: str) -> str:
    return settings.systemd_unit_template.format(server=server_name.lower(), instance=instance_name.lower())


class ServiceRestarter:
    """Restarts an instance and waits until it accepts connections again.

    Backends:
      - docker:  the instance runs in a container named after ``container_name_template``
      - systemd: the instance runs as the unit named by ``systemd_unit_template``
    """

    def __init__(
        self,
        backend: str | None = None,
        connect: Callable[[str, str], object] | None = None,
        client_factory: Callable[[], docker.DockerClient] | None = None,
        poll_interval_s: float | None = None,
    ):
        self.backend = (backend or settings.restart_backend).lower()
        if self.backend not in {"docker", "systemd"}:
            raise ValueError(f"Unknown restart backend '{self.backend}'. Use docker or systemd.")
        self._connect = connect or connector.connect
        self._client_factory = client_factory or _client
        self.poll_interval_s = settings.restart_poll_interval_s if poll_interval_s is None else poll_interval_s

    def restart(self, server_name: str, instance_name: str, timeout: int) -> None:
        deadline = time.monotonic() + max(0, int(timeout))
        if self.backend == "docker":
            self._restart_container(server_name, instance_name, timeout)
        else:
            self._restart_unit(server_name, instance_name, timeout)
        self.wait_until_online(server_name, instance_name, deadline)

    def _restart_container(self, server_name: str, instance_name: str, timeout: int) -> None:
        name = container_name_for(server_name, instance_name)
        try:
            c = self._client_factory()
            cont = c.containers.get(name)
            cont.restart(timeout=max(1, min(int(timeout), 60)))
        except NotFound as e:
            raise RestartError(f"Container '{name}' for {server_name}\\{instance_name} not found.") from e
        except DockerException as e:
            raise RestartError(f"Failed to restart container '{name}': {e}") from e

    def _restart_unit(self, server_name: str, instance_name: str, timeout: int) -> None:
        unit = systemd_unit_for(server_name, instance_name)
        try:
            subprocess.run(
                ["systemctl", "restart", unit],
                check=True,
                capture_output=True,
                text=True,
                timeout=max(1, int(timeout)),
            )
        except subprocess.TimeoutExpired as e:
            raise RestartTimeout(f"systemctl restart {unit} did not finish within {timeout}s.") from e
        except subprocess.CalledProcessError as e:
            raise RestartError(f"systemctl restart {unit} failed: {(e.stderr or '').strip()}") from e
        except OSError as e:
            raise RestartError(f"Could not run systemctl: {e}") from e

    def wait_until_online(self, server_name: str, instance_name: str, deadline: float) -> None:
        """Poll the instance until a session can be opened or ``deadline`` passes."""
        last_error: Exception | None = None
        while True:
            try:
                session = self._connect(server_name, instance_name)
            except InstanceConnectionError as e:
                last_error = e
            else:
                session.close()
                return
            if time.monotonic() >= deadline:
                break
            time.sleep(self.poll_interval_s)
        raise RestartTimeout(f"Instance {server_name}\\{instance_name} did not come back online in time: {last_error}")
