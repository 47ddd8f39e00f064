import pytest

from depot_packer.core.registry import JobRegistry
from depot_packer.models.job import Job, JobStatus


def make_registry(*app_ids):
    registry = JobRegistry()
    jobs = [
        registry.add(Job(app_id=app_id, os="Windows x64", branch="public"))
        for app_id in app_ids
    ]
    return registry, jobs


def test_order_and_map_stay_in_sync():
    registry, jobs = make_registry("10", "20", "30")
    assert registry.order == [job.id for job in jobs]
    assert len(registry) == 3
    assert all(job.id in registry for job in jobs)

    assert registry.remove(jobs[1].id)
    assert registry.order == [jobs[0].id, jobs[2].id]
    assert jobs[1].id not in registry


def test_duplicate_id_rejected():
    registry, jobs = make_registry("10")
    with pytest.raises(ValueError):
        registry.add(jobs[0])


def test_next_queued_is_earliest_in_order():
    registry, jobs = make_registry("10", "20", "30")
    jobs[0].status = JobStatus.DONE
    assert registry.next_queued() is jobs[1]
    assert registry.move(jobs[2].id, -2)
    assert registry.next_queued() is jobs[2]


def test_move_bounds():
    registry, jobs = make_registry("10", "20")
    assert not registry.move(jobs[0].id, -1)
    assert not registry.move(jobs[1].id, 1)
    assert not registry.move(jobs[0].id, 0)
    assert not registry.move("missing", 1)
    assert registry.move(jobs[0].id, 1)
    assert registry.order == [jobs[1].id, jobs[0].id]


def test_mutations_blocked_while_running():
    registry, jobs = make_registry("10", "20")
    registry.claim_running(jobs[0])
    assert not registry.move(jobs[1].id, -1)
    assert not registry.remove(jobs[1].id)
    assert not registry.clear()
    assert len(registry) == 2

    registry.release_running()
    assert registry.clear()
    assert len(registry) == 0
    assert registry.selected_id is None


def test_running_slot_is_exclusive():
    registry, jobs = make_registry("10", "20")
    registry.claim_running(jobs[0])
    with pytest.raises(RuntimeError):
        registry.claim_running(jobs[1])
    assert registry.running_job() is jobs[0]


def test_slot_refused_while_another_job_is_active():
    registry, jobs = make_registry("10", "20")
    jobs[0].status = JobStatus.COMPRESSING
    assert registry.active_count() == 1
    with pytest.raises(RuntimeError):
        registry.claim_running(jobs[1])
    assert registry.running_job() is None


def test_remove_selected_moves_selection_to_neighbour():
    registry, jobs = make_registry("10", "20", "30")
    registry.selected_id = jobs[2].id
    registry.remove(jobs[2].id)
    assert registry.selected_id == jobs[1].id
    registry.remove(jobs[0].id)
    assert registry.selected_id == jobs[1].id
    registry.remove(jobs[1].id)
    assert registry.selected_id is None


def test_find_by_correlation_id():
    registry, jobs = make_registry("10", "20")
    jobs[1].adopt_correlation_id("cid-9")
    assert registry.find_by_correlation_id("cid-9") is jobs[1]
    assert registry.find_by_correlation_id("cid-1") is None
    assert registry.find_by_correlation_id(None) is None
