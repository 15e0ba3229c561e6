from dataclasses import replace

import pytest

from conftest import FakeInstance, RestartRecorder
from sqlopt import api_models as models
from sqlopt import db, service_ops
from sqlopt.connector import ConfigOption, InstanceConnectionError
from sqlopt.reconciler import ConfigurationOptionNotFound, Reconciler
from sqlopt.service_ops import RestartError, RestartTimeout, ServiceRestarter

MAX_MEM = "max server memory (MB)"
COST = "cost threshold for parallelism"


def _reconciler(instance, restarter=None, active=True, local_name="SQLNODE1"):
    return Reconciler(
        connect=instance.connect,
        is_active_node=lambda session: active,
        restart_service=restarter or RestartRecorder(),
        local_computer_name=lambda: local_name,
    )


def _desired(**kw):
    base = {"instance_name": "MSSQLSERVER", "option_name": MAX_MEM, "option_value": 4096}
    base.update(kw)
    return models.DesiredState(**base)


def _levels(events, level):
    return [e["message"] for e in events if e["level"] == level]


def test_read_returns_stored_value_and_echoes_input(instance):
    rec = _reconciler(instance, active=False)
    observed = rec.read("db01", "MSSQLSERVER", MAX_MEM, restart_service=True, restart_timeout=30)

    assert observed.server_name == "db01"
    assert observed.instance_name == "MSSQLSERVER"
    assert observed.option_name == MAX_MEM
    assert observed.option_value == 2048
    assert observed.restart_service is True
    assert observed.restart_timeout == 30
    assert observed.is_active_node is False
    assert instance.connects == [("db01", "MSSQLSERVER")]
    assert instance.closed == 1


def test_read_defaults_server_name_to_local_computer(instance):
    observed = _reconciler(instance, local_name="SQLNODE7").read(None, "MSSQLSERVER", MAX_MEM)
    assert observed.server_name == "SQLNODE7"
    assert instance.connects == [("SQLNODE7", "MSSQLSERVER")]

    observed = _reconciler(instance, local_name="SQLNODE7").read("", "MSSQLSERVER", MAX_MEM)
    assert observed.server_name == "SQLNODE7"


def test_read_unknown_option_raises_not_found(instance):
    rec = _reconciler(instance)
    with pytest.raises(ConfigurationOptionNotFound) as exc:
        rec.read("db01", "MSSQLSERVER", "no such option")
    assert exc.value.option_name == "no such option"
    # session is still closed on failure
    assert instance.closed == 1

    runs = db.list_runs()
    assert runs[0].operation == "read"
    assert runs[0].outcome == "failed:ConfigurationOptionNotFound"
    assert _levels(db.latest_events(), "ERROR")


def test_option_match_is_exact(instance):
    with pytest.raises(ConfigurationOptionNotFound):
        _reconciler(instance).read("db01", "MSSQLSERVER", MAX_MEM.upper())


def test_duplicate_options_take_first_and_warn():
    inst = FakeInstance(
        [
            ConfigOption(MAX_MEM, 1000, is_dynamic=False),
            ConfigOption(MAX_MEM, 2000, is_dynamic=False),
        ]
    )
    observed = _reconciler(inst).read("db01", "MSSQLSERVER", MAX_MEM)
    assert observed.option_value == 1000
    assert any("using the first one" in m for m in _levels(db.latest_events(), "WARN"))


def test_connection_error_propagates_unmodified():
    err = InstanceConnectionError("login failed")
    inst = FakeInstance([], fail_connect=err)
    rec = _reconciler(inst)

    with pytest.raises(InstanceConnectionError) as exc:
        rec.read("db01", "MSSQLSERVER", MAX_MEM)
    assert exc.value is err

    with pytest.raises(InstanceConnectionError):
        rec.apply(_desired())
    assert len(inst.connects) == 2


@pytest.mark.parametrize("value,expected", [(2048, models.TestOutcome.SATISFIED), (4096, models.TestOutcome.UNSATISFIED)])
def test_test_compares_values(instance, value, expected):
    outcome = _reconciler(instance).test(_desired(option_value=value))
    assert outcome is expected
    assert outcome.in_desired_state is (expected is models.TestOutcome.SATISFIED)


def test_test_not_applicable_on_passive_node(instance):
    rec = _reconciler(instance, active=False)
    outcome = rec.test(_desired(option_value=4096, process_only_on_active_node=True))
    assert outcome is models.TestOutcome.NOT_APPLICABLE
    assert outcome.in_desired_state is True

    # Even a matching value is not reported as satisfied.
    assert rec.test(_desired(option_value=2048, process_only_on_active_node=True)) is models.TestOutcome.NOT_APPLICABLE


def test_test_evaluates_on_active_node_or_when_flag_off(instance):
    assert _reconciler(instance, active=True).test(_desired(process_only_on_active_node=True)) is models.TestOutcome.UNSATISFIED
    assert _reconciler(instance, active=False).test(_desired()) is models.TestOutcome.UNSATISFIED


def test_test_records_run(instance):
    _reconciler(instance).test(_desired())
    run = db.list_runs()[0]
    assert run.operation == "test"
    assert run.outcome == "unsatisfied"
    assert run.desired_value == 4096
    assert run.observed_value == 2048


def test_apply_dynamic_option_never_restarts(instance):
    restarter = RestartRecorder()
    rec = _reconciler(instance, restarter)
    rec.apply(_desired(option_name=COST, option_value=50, restart_service=True))

    assert instance.value(COST) == 50
    assert instance.commits == 1
    assert restarter.calls == []
    assert any("no restart is needed" in m for m in _levels(db.latest_events(), "INFO"))
    assert db.list_runs()[0].outcome == "no_restart_needed"


def test_apply_non_dynamic_with_restart_calls_restarter_once(instance):
    restarter = RestartRecorder()
    rec = _reconciler(instance, restarter)
    rec.apply(_desired(server_name="db01", restart_service=True, restart_timeout=300))

    assert instance.value(MAX_MEM) == 4096
    assert restarter.calls == [("db01", "MSSQLSERVER", 300)]
    assert db.list_runs()[0].outcome == "restarted"


def test_apply_non_dynamic_without_restart_warns(instance):
    restarter = RestartRecorder()
    rec = _reconciler(instance, restarter)
    rec.apply(_desired(server_name="db01"))

    assert instance.value(MAX_MEM) == 4096
    assert restarter.calls == []
    warnings = _levels(db.latest_events(), "WARN")
    assert len(warnings) == 1
    assert "db01\\MSSQLSERVER" in warnings[0]
    assert MAX_MEM in warnings[0]
    assert "4096" in warnings[0]
    assert db.list_runs()[0].outcome == "restart_required"


@pytest.mark.parametrize("error", [RestartError("service failed"), RestartTimeout("still starting")])
def test_apply_restart_failures_propagate(instance, error):
    rec = _reconciler(instance, RestartRecorder(error=error))
    with pytest.raises(type(error)):
        rec.apply(_desired(restart_service=True))
    # The value was committed before the restart was attempted.
    assert instance.value(MAX_MEM) == 4096
    assert db.list_runs()[0].outcome == f"failed:{type(error).__name__}"


def test_apply_unknown_option_commits_nothing(instance):
    rec = _reconciler(instance)
    with pytest.raises(ConfigurationOptionNotFound):
        rec.apply(_desired(option_name="bogus"))
    assert instance.commits == 0
    assert instance.closed == 1


def test_apply_ignores_active_node_flag(instance):
    rec = _reconciler(instance, active=False)
    rec.apply(_desired(process_only_on_active_node=True))
    assert instance.value(MAX_MEM) == 4096


def test_apply_twice_is_idempotent_but_reevaluates_restart(instance):
    restarter = RestartRecorder()
    rec = _reconciler(instance, restarter)
    desired = _desired(restart_service=True)

    rec.apply(desired)
    first = rec.read(None, "MSSQLSERVER", MAX_MEM)
    rec.apply(desired)
    second = rec.read(None, "MSSQLSERVER", MAX_MEM)

    assert first == second
    assert second.option_value == 4096
    assert instance.commits == 2
    assert len(restarter.calls) == 2
    assert any("already had the value" in e["message"] for e in db.latest_events())


def test_example_scenario_max_server_memory(instance):
    restarter = RestartRecorder()
    rec = _reconciler(instance, restarter)
    desired = _desired(option_value=4096, restart_service=False)

    assert rec.test(desired) is models.TestOutcome.UNSATISFIED
    rec.apply(desired)
    assert restarter.calls == []
    assert _levels(db.latest_events(), "WARN")
    assert rec.read(None, "MSSQLSERVER", MAX_MEM).option_value == 4096
    assert rec.test(desired) is models.TestOutcome.SATISFIED


def test_journal_can_be_disabled(instance):
    rec = Reconciler(
        connect=instance.connect,
        is_active_node=lambda s: True,
        restart_service=RestartRecorder(),
        local_computer_name=lambda: "n1",
        journal=False,
    )
    rec.apply(_desired())
    assert db.latest_events() == []
    assert db.list_runs() == []


class _Container:
    def __init__(self):
        self.restarts = 0

    def restart(self, timeout=None):
        self.restarts += 1


class _DockerClient:
    def __init__(self, container):
        self.containers = self
        self._container = container

    def get(self, name):
        return self._container


def _docker_restarter(instance, container):
    return ServiceRestarter(
        backend="docker",
        connect=instance.connect,
        client_factory=lambda: _DockerClient(container),
        poll_interval_s=0,
    )


def test_messages_are_localized(instance):
    from sqlopt.messages import load_messages

    container = _Container()
    rec = Reconciler(
        connect=instance.connect,
        is_active_node=lambda s: True,
        restart_service=_docker_restarter(instance, container).restart,
        local_computer_name=lambda: "n1",
        messages=load_messages("sv-SE"),
    )
    rec.apply(_desired())
    assert any("måste startas om" in m for m in _levels(db.latest_events(), "WARN"))

    rec.apply(_desired(restart_service=True))
    assert container.restarts == 1
    messages = [e["message"] for e in db.latest_events()]
    assert any("har startats om" in m for m in messages)
    assert not any("Restarted" in m or "restarted" in m for m in messages)


def test_apply_with_restart_and_journal_off_never_touches_journal(instance, tmp_path, monkeypatch):
    # A journal file whose tables were never created.
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "fresh.db")))
    container = _Container()
    rec = Reconciler(
        connect=instance.connect,
        is_active_node=lambda s: True,
        restart_service=_docker_restarter(instance, container).restart,
        local_computer_name=lambda: "n1",
        journal=False,
    )

    rec.apply(_desired(restart_service=True))

    assert container.restarts == 1
    assert instance.value(MAX_MEM) == 4096
    assert not (tmp_path / "fresh.db").exists()


def test_unknown_restart_backend_fails_before_commit(instance, monkeypatch):
    monkeypatch.setattr(service_ops, "settings", replace(service_ops.settings, restart_backend="winrm"))
    with pytest.raises(ValueError):
        Reconciler(connect=instance.connect, is_active_node=lambda s: True, local_computer_name=lambda: "n1")
    assert instance.connects == []
    assert instance.commits == 0
