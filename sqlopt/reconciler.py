from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping

from . import cluster, connector, db
from .api_models import DEFAULT_RESTART_TIMEOUT_S, DesiredState, ObservedState, TestOutcome
from .messages import load_messages
from .service_ops import ServiceRestarter
from .settings import settings


class ConfigurationOptionNotFound(Exception):
    def __init__(self, option_name: str, message: str | None = None):
        self.option_name = option_name
        super().__init__(message or f"Configuration option '{option_name}' was not found on the instance.")


class Reconciler:
    """Reads, tests and applies one sp_configure option on one instance.

    Every collaborator is injectable:
      connect(server, instance) -> session with ``options``, ``commit()``, ``close()``
      is_active_node(session) -> bool
      restart_service(server, instance, timeout_s) -> None
      local_computer_name() -> str
    """

    def __init__(
        self,
        connect: Callable[[str, str], Any] | None = None,
        is_active_node: Callable[[Any], bool] | None = None,
        restart_service: Callable[[str, str, int], None] | None = None,
        local_computer_name: Callable[[], str] | None = None,
        messages: Mapping[str, str] | None = None,
        journal: bool = True,
    ):
        self._connect = connect or connector.connect
        self._local_name = local_computer_name or cluster.local_computer_name
        self._is_active_node = is_active_node or (lambda s: cluster.is_active_node(s, self._local_name()))
        # Constructed here: an unknown backend must fail before any commit.
        self._restart = restart_service or ServiceRestarter().restart
        self.messages = messages if messages is not None else load_messages(settings.culture)
        self.journal = journal
        if self.journal:
            db.init_db()

    # --- diagnostics ---
    def _msg(self, key: str, **kw: Any) -> str:
        return self.messages[key].format(**kw)

    def _event(self, level: str, key: str, server_name: str | None, instance_name: str | None, **kw: Any) -> None:
        if not self.journal:
            return
        db.log_event(
            level,
            self._msg(key, server=server_name, instance=instance_name, **kw),
            server_name=server_name,
            instance_name=instance_name,
        )

    def _run(self, operation: str, server_name: str | None, instance_name: str, option_name: str, outcome: str, **kw: Any) -> None:
        if self.journal:
            db.record_run(operation, server_name, instance_name, option_name, outcome, **kw)

    @contextmanager
    def _recorded(self, operation: str, server_name: str | None, instance_name: str, option_name: str, desired_value: int | None = None) -> Iterator[None]:
        """Journal a failed operation, then let the error propagate unchanged."""
        try:
            yield
        except Exception as e:
            self._event(
                "ERROR", "operation_failed", server_name, instance_name,
                operation=operation, option=option_name, error=f"{type(e).__name__}: {e}",
            )
            self._run(operation, server_name, instance_name, option_name, f"failed:{type(e).__name__}", desired_value=desired_value)
            raise

    def _find_option(self, session: Any, option_name: str, server_name: str, instance_name: str) -> Any:
        matches = [o for o in session.options if o.display_name == option_name]
        if not matches:
            raise ConfigurationOptionNotFound(option_name, self._msg("option_not_found", option=option_name))
        if len(matches) > 1:
            self._event("WARN", "duplicate_option", server_name, instance_name, option=option_name, count=len(matches))
        return matches[0]

    # --- operations ---
    def read(
        self,
        server_name: str | None,
        instance_name: str,
        option_name: str,
        restart_service: bool = False,
        restart_timeout: int = DEFAULT_RESTART_TIMEOUT_S,
    ) -> ObservedState:
        server_name = server_name or self._local_name()
        with self._recorded("read", server_name, instance_name, option_name):
            observed = self._read(server_name, instance_name, option_name, restart_service, restart_timeout)
        self._run("read", server_name, instance_name, option_name, "read", observed_value=observed.option_value)
        return observed

    def _read(self, server_name: str, instance_name: str, option_name: str, restart_service: bool, restart_timeout: int) -> ObservedState:
        self._event("INFO", "reading_option", server_name, instance_name, option=option_name)
        session = self._connect(server_name, instance_name)
        try:
            active = bool(self._is_active_node(session))
            option = self._find_option(session, option_name, server_name, instance_name)
        finally:
            session.close()

        self._event("INFO", "option_value", server_name, instance_name, option=option.display_name, value=option.configured_value)
        return ObservedState(
            server_name=server_name,
            instance_name=instance_name,
            option_name=option.display_name,
            option_value=option.configured_value,
            restart_service=restart_service,
            restart_timeout=restart_timeout,
            is_active_node=active,
        )

    def test(self, desired: DesiredState) -> TestOutcome:
        server_name = desired.server_name or self._local_name()
        with self._recorded("test", server_name, desired.instance_name, desired.option_name, desired.option_value):
            observed = self._read(
                server_name, desired.instance_name, desired.option_name, desired.restart_service, desired.restart_timeout
            )

        if desired.process_only_on_active_node and not observed.is_active_node:
            self._event("INFO", "not_active_node", server_name, desired.instance_name)
            outcome = TestOutcome.NOT_APPLICABLE
        elif observed.option_value == desired.option_value:
            self._event("INFO", "in_desired_state", server_name, desired.instance_name, option=observed.option_name, value=observed.option_value)
            outcome = TestOutcome.SATISFIED
        else:
            self._event(
                "INFO", "not_in_desired_state", server_name, desired.instance_name,
                option=observed.option_name, actual=observed.option_value, expected=desired.option_value,
            )
            outcome = TestOutcome.UNSATISFIED

        self._run(
            "test", server_name, desired.instance_name, desired.option_name, outcome.value,
            desired_value=desired.option_value, observed_value=observed.option_value,
        )
        return outcome

    def apply(self, desired: DesiredState) -> None:
        server_name = desired.server_name or self._local_name()
        instance_name = desired.instance_name
        with self._recorded("apply", server_name, instance_name, desired.option_name, desired.option_value):
            outcome, previous = self._apply(server_name, desired)
        self._run(
            "apply", server_name, instance_name, desired.option_name, outcome,
            desired_value=desired.option_value, observed_value=previous,
        )

    def _apply(self, server_name: str, desired: DesiredState) -> tuple[str, int]:
        instance_name = desired.instance_name
        session = self._connect(server_name, instance_name)
        try:
            option = self._find_option(session, desired.option_name, server_name, instance_name)
            previous = option.configured_value
            self._event("INFO", "setting_option", server_name, instance_name, option=option.display_name, value=desired.option_value)
            option.assign(desired.option_value)
            session.commit()
        finally:
            session.close()

        if previous == desired.option_value:
            self._event("INFO", "option_unchanged", server_name, instance_name, option=option.display_name, value=desired.option_value)
        else:
            self._event("INFO", "option_updated", server_name, instance_name, option=option.display_name, value=desired.option_value)

        if option.is_dynamic:
            self._event("INFO", "no_restart_needed", server_name, instance_name, option=option.display_name)
            return "no_restart_needed", previous

        if desired.restart_service:
            self._event(
                "INFO", "restarting", server_name, instance_name,
                option=option.display_name, timeout=desired.restart_timeout,
            )
            self._restart(server_name, instance_name, desired.restart_timeout)
            self._event("INFO", "restarted", server_name, instance_name)
            return "restarted", previous

        # Value is committed; it only takes effect after a restart nobody asked for.
        self._event("WARN", "restart_required", server_name, instance_name, option=option.display_name, value=desired.option_value)
        return "restart_required", previous
