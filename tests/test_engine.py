"""Tests for the phase sequencer: state machine, context threading, failure handling."""
import pytest
from fakes import FakeShell, make_config, make_services
from kessel.core.config import settings
from kessel.core.context import ContextKey, RunContext
from kessel.core.engine import PhaseSequencer
from kessel.core.supabase import SupabaseCli
from kessel.core.tasks import Task
from kessel.core.workflow import Phase, RunState
from kessel.phases.base import Services
from kessel.phases.registry import PhaseRegistry


def registry_with(**builders):
    def empty(config, services, options):
        return []
    mapping = {phase: builders.get(phase.value, empty) for phase in Phase}
    return PhaseRegistry(mapping=mapping)


@pytest.mark.asyncio
async def test_successful_run_threads_context_through_phases(tmp_path):
    seen = {}

    def prechecks(config, services, options):
        async def detect(ctx, task):
            ctx.set(ContextKey.GITHUB_TOKEN, "gho_x")
        return [Task("detect", detect)]

    def setup(config, services, options):
        async def schema(ctx, task):
            ctx.set(ContextKey.SCHEMA_NAME, config.schema_name)
        return [Task("schema", schema)]

    def creation(config, services, options):
        async def use(ctx, task):
            seen["token"] = ctx.get(ContextKey.GITHUB_TOKEN)
            seen["schema"] = ctx.get(ContextKey.SCHEMA_NAME)
        return [Task("use", use)]

    sequencer = PhaseSequencer(
        make_services(), registry=registry_with(prechecks=prechecks, setup=setup, creation=creation)
    )
    outcome = await sequencer.run(make_config(tmp_path))

    assert outcome.ok
    assert outcome.state == RunState.SUCCEEDED
    assert seen == {"token": "gho_x", "schema": "my_app"}
    assert [p.phase for p in outcome.phases] == [Phase.PRECHECKS, Phase.SETUP, Phase.CREATION]


@pytest.mark.asyncio
async def test_failure_stops_sequence_and_keeps_original_error(tmp_path):
    error = ConnectionError("INFRA-DB down")
    built = []

    def prechecks(config, services, options):
        built.append("prechecks")

        async def fail(ctx, task):
            raise error
        return [Task("reach", fail)]

    def setup(config, services, options):
        built.append("setup")
        return []

    sequencer = PhaseSequencer(make_services(), registry=registry_with(prechecks=prechecks, setup=setup))
    outcome = await sequencer.run(make_config(tmp_path))

    assert outcome.state == RunState.FAILED
    assert outcome.error is error
    assert built == ["prechecks"]
    assert len(outcome.phases) == 1 and outcome.phases[0].ok is False
    with pytest.raises(ConnectionError) as exc_info:
        outcome.raise_for_failure()
    assert exc_info.value is error


@pytest.mark.asyncio
async def test_state_transitions_follow_phase_order(tmp_path):
    states = []
    sequencer = None

    def builder(config, services, options):
        states.append(sequencer.state)
        return []

    sequencer = PhaseSequencer(
        make_services(), registry=registry_with(prechecks=builder, setup=builder, creation=builder)
    )
    assert sequencer.state == RunState.PENDING
    await sequencer.run(make_config(tmp_path))

    assert states == [RunState.RUNNING_PRECHECKS, RunState.RUNNING_SETUP, RunState.RUNNING_CREATION]
    assert sequencer.state == RunState.SUCCEEDED


@pytest.mark.asyncio
async def test_run_log_is_closed_on_failure(tmp_path):
    services = make_services()
    config = make_config(tmp_path)

    def creation(cfg, svc, options):
        async def open_log(ctx, task):
            svc.run_log.open(cfg.project_path, cfg.project_name)

        async def fail(ctx, task):
            raise RuntimeError("tenant failed")
        return [Task("open", open_log), Task("fail", fail)]

    context = RunContext()
    outcome = await PhaseSequencer(services, registry=registry_with(creation=creation)).run(config, context)

    assert not outcome.ok
    assert services.run_log.closed
    log_path = context.get(ContextKey.LOG_FILE_PATH)
    assert log_path is not None
    text = log_path.read_text(encoding="utf-8")
    assert "[ERROR] Failed: fail" in text
    assert "Run failed" in text
    assert text.rstrip().endswith("Log closed")


@pytest.mark.asyncio
async def test_failure_in_existing_target_leaves_a_log(tmp_path):
    services = make_services()
    config = make_config(tmp_path)
    config.project_path.mkdir()

    def prechecks(cfg, svc, options):
        async def fail(ctx, task):
            raise RuntimeError("supabase CLI missing")
        return [Task("Supabase CLI", fail)]

    context = RunContext()
    outcome = await PhaseSequencer(services, registry=registry_with(prechecks=prechecks)).run(config, context)

    assert not outcome.ok
    log_path = context.get(ContextKey.LOG_FILE_PATH)
    assert log_path.parent == config.project_path / ".kessel"
    text = log_path.read_text(encoding="utf-8")
    assert "[ERROR] Failed: Supabase CLI" in text
    assert "Run failed" in text


@pytest.mark.asyncio
async def test_failure_without_target_writes_no_log(tmp_path):
    def prechecks(cfg, svc, options):
        async def fail(ctx, task):
            raise RuntimeError("boom")
        return [Task("fail", fail)]

    context = RunContext()
    config = make_config(tmp_path)
    outcome = await PhaseSequencer(make_services(), registry=registry_with(prechecks=prechecks)).run(config, context)

    assert not outcome.ok
    assert ContextKey.LOG_FILE_PATH not in context
    assert not config.project_path.exists()


@pytest.mark.asyncio
async def test_reused_sequencer_starts_each_run_clean(tmp_path):
    calls = []

    def prechecks(cfg, svc, options):
        async def flaky(ctx, task):
            calls.append(cfg.project_name)
            svc.run_log.open(cfg.project_path, cfg.project_name)
            if len(calls) == 1:
                raise RuntimeError("first run fails")
        return [Task("flaky", flaky)]

    services = make_services()
    sequencer = PhaseSequencer(services, registry=registry_with(prechecks=prechecks))
    first = await sequencer.run(make_config(tmp_path))
    second = await sequencer.run(make_config(tmp_path))

    assert first.state == RunState.FAILED
    assert second.state == RunState.SUCCEEDED
    assert [p.phase for p in second.phases] == [Phase.PRECHECKS, Phase.SETUP, Phase.CREATION]
    assert all(p.ok for p in second.phases)
    assert len(first.phases) == 1
    assert second.context.get(ContextKey.LOG_FILE_PATH) is not None


def test_services_default_to_global_settings():
    shell = FakeShell()
    services = Services(
        shell=shell,
        supabase_cli=SupabaseCli(shell),
        github=lambda token: None,
        supabase=lambda url, key: None,
    )
    assert services.settings is settings
    assert Services.default().settings is settings
