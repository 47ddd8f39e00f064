import asyncio

import pytest

from depot_packer.core import messages
from depot_packer.exceptions import (
    NoQueuedJobsError,
    QueueBusyError,
    QueueIdleError,
    RunnerInvocationError,
)
from depot_packer.models.events import EventSource, Stream
from depot_packer.models.job import JobSpec, JobStatus


def spec(app_id, **kwargs):
    return JobSpec(app_id=app_id, **kwargs)


def test_start_runs_earliest_queued_job(session, runner):
    scheduler = session.scheduler
    first = scheduler.enqueue(spec("10"))
    second = scheduler.enqueue(spec("20", os="Linux", branch="beta"))

    cid = asyncio.run(scheduler.start())

    job = session.registry.get(first)
    assert cid == "cid-1"
    assert job.status is JobStatus.RUNNING
    assert job.correlation_id == "cid-1"
    assert session.registry.running_id == first
    assert session.registry.selected_id == first
    assert session.registry.get(second).status is JobStatus.QUEUED
    assert runner.requests[0].app_id == "10"
    assert session.stats.jobs_started == 1

    lines = job.log.lines
    assert messages.OUTPUT_DIR.format(path="/srv/depots") in lines
    assert messages.SELECTED_OS.format(os="Windows x64") in lines
    assert lines[-1] == messages.STARTING.format(app_id="10")


def test_start_passes_compression_settings(runner, bus, presenter):
    from depot_packer.core.session import QueueSession
    from depot_packer.models.config import AppConfig

    config = AppConfig(
        skip_compression=True,
        compression_password_enabled=True,
        compression_password="hunter2",
    )
    session = QueueSession(runner, bus, config, presenter)
    session.scheduler.enqueue(spec("10", username="bob", password="pw"))
    asyncio.run(session.scheduler.start())

    request = runner.requests[0]
    assert request.skip_compression
    assert request.compression_password == "hunter2"
    assert request.username == "bob"
    assert request.password == "pw"


def test_start_guards(session):
    scheduler = session.scheduler
    with pytest.raises(NoQueuedJobsError):
        asyncio.run(scheduler.start())

    scheduler.enqueue(spec("10"))
    scheduler.enqueue(spec("20"))

    async def scenario():
        await scheduler.start()
        with pytest.raises(QueueBusyError):
            await scheduler.start()

    asyncio.run(scenario())
    assert session.registry.active_count() == 1


def test_start_failure_marks_job_failed_and_frees_slot(session, runner):
    runner.fail_app_ids = {"10"}
    job_id = session.scheduler.enqueue(spec("10"))

    with pytest.raises(RunnerInvocationError):
        asyncio.run(session.scheduler.start())

    job = session.registry.get(job_id)
    assert job.status is JobStatus.FAILED
    assert not session.registry.is_running
    assert session.stats.start_failures == 1
    assert any(line.startswith("Start failed:") for line in job.log.lines)


def test_advance_skips_jobs_that_fail_to_start(session, runner):
    runner.fail_app_ids = {"10"}
    failed = session.scheduler.enqueue(spec("10"))
    started = session.scheduler.enqueue(spec("20"))

    cid = asyncio.run(session.scheduler.advance())

    assert cid == "cid-1"
    assert session.registry.get(failed).status is JobStatus.FAILED
    assert session.registry.get(started).status is JobStatus.RUNNING


def test_compressing_to_completed_starts_next_job(session, bus, runner):
    first = session.scheduler.enqueue(spec("10"))
    second = session.scheduler.enqueue(spec("20"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_status("running", job_id=cid)
        bus.publish_status("finalizing", job_id=cid)
        bus.publish_status("compressing", job_id=cid)
        await session.drain()
        assert session.registry.get(first).compression_progress == 0

        bus.publish_progress(42)
        await session.drain()
        assert session.registry.get(first).compression_progress == 42

        bus.publish_log(" 17% 3 + game.pak", source=EventSource.COMPRESSION)
        await session.drain()
        assert session.registry.get(first).compression_progress == 17

        bus.publish_status("completed", 0, job_id=cid)
        await session.drain()

    asyncio.run(scenario())

    done = session.registry.get(first)
    assert done.status is JobStatus.DONE
    assert done.compression_progress is None
    assert session.registry.get(second).status is JobStatus.RUNNING
    assert session.registry.running_id == second
    assert session.stats.jobs_done == 1
    assert session.stats.jobs_started == 2
    assert "[7z:stdout]  17% 3 + game.pak" in done.log.lines


def test_progress_ignored_unless_compressing(session, bus):
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_log("Downloading 55%", job_id=cid)
        bus.publish_progress(30, job_id=cid)
        await session.drain()

    asyncio.run(scenario())
    assert session.registry.get(job_id).compression_progress is None


def test_out_of_range_progress_is_dropped(session, bus):
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_status("compressing", job_id=cid)
        bus.publish_progress(64)
        bus.publish_progress(140)
        bus.publish_progress(-1)
        await session.drain()

    asyncio.run(scenario())
    assert session.registry.get(job_id).compression_progress == 64


def test_failed_exit_advances_queue(session, bus):
    first = session.scheduler.enqueue(spec("10"))
    second = session.scheduler.enqueue(spec("20"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_log("Error: app not found", Stream.STDERR, cid)
        bus.publish_status("exited", 1, job_id=cid)
        await session.drain()

    asyncio.run(scenario())
    assert session.registry.get(first).status is JobStatus.FAILED
    assert session.registry.get(second).status is JobStatus.RUNNING
    assert session.stats.jobs_failed == 1
    assert "[stderr] Error: app not found" in session.registry.get(first).log.lines


def test_stale_events_for_finished_job_are_discarded(session, bus):
    first = session.scheduler.enqueue(spec("10"))
    second = session.scheduler.enqueue(spec("20"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_status("completed", 0, job_id=cid)
        await session.drain()
        before = len(session.registry.get(first).log)

        bus.publish_log("late line", job_id=cid)
        bus.publish_status("error", job_id=cid)
        await session.drain()
        return before

    before = asyncio.run(scenario())
    done = session.registry.get(first)
    assert len(done.log) == before
    assert done.status is JobStatus.DONE
    assert session.registry.get(second).status is JobStatus.RUNNING


def test_untagged_events_go_to_running_job(session, bus):
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        await session.scheduler.start()
        bus.publish_log("hello from nowhere")
        await session.drain()

    asyncio.run(scenario())
    assert "[stdout] hello from nowhere" in session.registry.get(job_id).log.lines


def test_running_job_adopts_first_unknown_id(session, bus, runner):
    runner.return_ids = False
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        await session.scheduler.start()
        bus.publish_status("running", job_id="late-id")
        bus.publish_log("other job", job_id="someone-else")
        bus.publish_log("mine", job_id="late-id")
        await session.drain()

    asyncio.run(scenario())
    job = session.registry.get(job_id)
    assert job.correlation_id == "late-id"
    assert "[stdout] mine" in job.log.lines
    assert "[stdout] other job" not in job.log.lines


def test_compression_status_is_only_logged(session, bus):
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        await session.scheduler.start()
        bus.publish_status("exited", 2, source=EventSource.COMPRESSION)
        await session.drain()

    asyncio.run(scenario())
    job = session.registry.get(job_id)
    assert job.status is JobStatus.RUNNING
    assert messages.ARCHIVER_STATUS.format(status="exited") in job.log.lines


def test_missing_depots_warning_sends_advisory(session, bus, presenter):
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        cid = await session.scheduler.start()
        bus.publish_log("Couldn't find any depots to download for app 10", job_id=cid)
        await session.drain()

    asyncio.run(scenario())
    assert presenter.advisories == [messages.NO_DEPOTS]
    assert messages.NO_DEPOTS in session.registry.get(job_id).log.lines


def test_cancel_download_and_compression(session, bus, runner):
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        cid = await session.scheduler.start()
        await session.scheduler.cancel()
        bus.publish_status("compressing", job_id=cid)
        await session.drain()
        await session.scheduler.cancel()

    asyncio.run(scenario())
    assert runner.cancel_download_calls == 1
    assert runner.cancel_compression_calls == 1
    assert session.stats.cancellations == 2
    job = session.registry.get(job_id)
    assert job.log.lines.count(messages.CANCELLED) == 2


def test_cancel_requires_running_job(session):
    with pytest.raises(QueueIdleError):
        asyncio.run(session.scheduler.cancel())


def test_cancel_failure_is_logged(session, runner):
    runner.cancel_error = OSError("no such process")
    job_id = session.scheduler.enqueue(spec("10"))

    async def scenario():
        await session.scheduler.start()
        with pytest.raises(RunnerInvocationError):
            await session.scheduler.cancel()

    asyncio.run(scenario())
    job = session.registry.get(job_id)
    assert messages.CANCEL_FAILED.format(error="no such process") in job.log.lines
    assert job.status is JobStatus.RUNNING


def test_queue_edits_refused_while_running(session, presenter):
    first = session.scheduler.enqueue(spec("10"))
    second = session.scheduler.enqueue(spec("20"))
    asyncio.run(session.scheduler.start())

    assert not session.scheduler.reorder(second, -1)
    assert not session.scheduler.remove(second)
    with pytest.raises(QueueBusyError):
        session.scheduler.clear()
    assert session.registry.order == [first, second]
    assert presenter.advisories == [messages.NO_REORDER_WHILE_RUNNING] * 2


def test_queue_edits_when_idle(session):
    first = session.scheduler.enqueue(spec("10"))
    second = session.scheduler.enqueue(spec("20"))
    assert session.registry.selected_id == first

    assert session.scheduler.reorder(second, -1)
    assert session.registry.order == [second, first]
    assert session.scheduler.remove(first)
    assert session.registry.selected_id == second

    session.context.remembered_username = "alice"
    session.scheduler.clear()
    assert len(session.registry) == 0
    assert session.context.remembered_username is None
