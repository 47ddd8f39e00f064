import asyncio

import pytest

from depot_packer.core import messages
from depot_packer.core.conflict import OutputConflict
from depot_packer.exceptions import ConflictError, RunnerInvocationError
from depot_packer.models.events import ConflictChoice
from depot_packer.models.job import JobSpec


def conflict(job_id, name="app_10.Build.1.Win64.Public"):
    return OutputConflict(job_id, name, f"/srv/depots/{name}")


def test_one_conflict_active_at_a_time(session, presenter):
    resolver = session.conflicts
    assert resolver.submit(conflict("cid-1"))
    assert not resolver.submit(conflict("cid-2"))
    assert not resolver.submit(conflict("cid-1"))
    assert not resolver.submit(conflict("cid-2"))

    assert resolver.active.job_id == "cid-1"
    assert [c.job_id for c in resolver.waiting] == ["cid-2"]
    assert presenter.names().count("conflict_presented") == 1


def test_resolve_forwards_choice_and_presents_next(session, runner, presenter):
    resolver = session.conflicts
    resolver.submit(conflict("cid-1"))
    resolver.submit(conflict("cid-2"))

    asyncio.run(resolver.resolve("copy"))

    assert runner.resolved == [("cid-1", "copy")]
    assert resolver.active.job_id == "cid-2"
    assert resolver.waiting == []
    assert presenter.names()[-2:] == ["conflict_closed", "conflict_presented"]

    asyncio.run(resolver.resolve(ConflictChoice.OVERWRITE))
    assert runner.resolved[-1] == ("cid-2", "overwrite")
    assert resolver.active is None


def test_invalid_choice_keeps_conflict_open(session, runner):
    resolver = session.conflicts
    resolver.submit(conflict("cid-1"))
    with pytest.raises(ConflictError):
        asyncio.run(resolver.resolve("rename"))
    assert resolver.active.job_id == "cid-1"
    assert runner.resolved == []


def test_resolve_without_conflict(session):
    with pytest.raises(ConflictError):
        asyncio.run(session.conflicts.resolve("cancel"))


def test_runner_error_is_logged_and_conflict_closed(session, runner):
    runner.resolve_error = RuntimeError("no pending conflict")
    job_id = session.scheduler.enqueue(JobSpec(app_id="10"))

    async def scenario():
        cid = await session.scheduler.start()
        session.conflicts.submit(conflict(cid))
        with pytest.raises(RunnerInvocationError):
            await session.conflicts.resolve("overwrite")

    asyncio.run(scenario())
    job = session.registry.get(job_id)
    assert session.conflicts.active is None
    assert (
        messages.CONFLICT_RESOLVE_ERROR.format(error="no pending conflict")
        in job.log.lines
    )


def test_conflict_event_is_logged_on_job(session, bus, runner):
    job_id = session.scheduler.enqueue(JobSpec(app_id="10"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_conflict(cid, "game.Build.1", "/srv/depots/game.Build.1")
        await session.drain()
        await session.conflicts.resolve("cancel")

    asyncio.run(scenario())
    lines = session.registry.get(job_id).log.lines
    assert messages.CONFLICT_LOG.format(path="/srv/depots/game.Build.1") in lines
    assert messages.CONFLICT_CHOICE["cancel"] in lines
    assert runner.resolved == [("cid-1", "cancel")]


def test_conflict_choices_and_display_name():
    item = OutputConflict("cid-1", "", "/srv/depots/x")
    assert item.display_name == "/srv/depots/x"
    assert [choice.value for choice in item.choices] == ["overwrite", "copy", "cancel"]
