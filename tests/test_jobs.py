import pytest

from dealforge_lookup.jobs import InvalidJobTransition, JobStatus, JobStore, JobType, can_transition, run_refresh_job
from dealforge_lookup.orchestrator import LookupOrchestrator
from dealforge_lookup.sources.base import AdapterError

from conftest import DAY, NOW, FakeSource


@pytest.fixture
def jobs(tmp_path):
    return JobStore(str(tmp_path / "jobs.sqlite"))


def test_create_and_get(jobs):
    job = jobs.create(JobType.CSV_IMPORT, {"file": "parks.csv"}, NOW)
    assert job.id.startswith("job_")
    assert job.status is JobStatus.PENDING
    assert job.parameters == {"file": "parks.csv"}
    assert job.created_at == NOW
    assert job.started_at is None
    assert jobs.get(job.id).to_dict() == job.to_dict()


def test_forward_transitions_set_timestamps(jobs):
    job = jobs.create(JobType.DISCOVER_PARKS, now=NOW)
    running = jobs.transition(job.id, JobStatus.RUNNING, NOW + DAY)
    assert running.started_at == NOW + DAY
    done = jobs.transition(job.id, JobStatus.COMPLETED, NOW + 2 * DAY, result={"found": 3})
    assert done.completed_at == NOW + 2 * DAY
    assert done.result == {"found": 3}
    assert done.is_terminal


def test_pending_can_be_cancelled(jobs):
    job = jobs.create(JobType.TDHCA_TITLES_SYNC, now=NOW)
    assert jobs.transition(job.id, JobStatus.CANCELLED, NOW).status is JobStatus.CANCELLED


@pytest.mark.parametrize(
    "path",
    [
        [JobStatus.COMPLETED],
        [JobStatus.RUNNING, JobStatus.PENDING],
        [JobStatus.RUNNING, JobStatus.FAILED, JobStatus.RUNNING],
        [JobStatus.CANCELLED, JobStatus.RUNNING],
    ],
)
def test_invalid_transitions_raise(jobs, path):
    job = jobs.create(JobType.CALCULATE_DISTRESS, now=NOW)
    *ok, bad = path
    for status in ok:
        jobs.transition(job.id, status, NOW)
    with pytest.raises(InvalidJobTransition):
        jobs.transition(job.id, bad, NOW)


def test_can_transition_table():
    assert can_transition(JobStatus.PENDING, JobStatus.RUNNING)
    assert can_transition(JobStatus.RUNNING, JobStatus.CANCELLED)
    assert not can_transition(JobStatus.COMPLETED, JobStatus.FAILED)
    assert not can_transition(JobStatus.RUNNING, JobStatus.RUNNING)


def test_unknown_job(jobs):
    with pytest.raises(KeyError):
        jobs.get("job_missing")


def test_list_filters_by_status(jobs):
    a = jobs.create(JobType.CSV_IMPORT, now=NOW)
    jobs.create(JobType.CSV_IMPORT, now=NOW + DAY)
    jobs.transition(a.id, JobStatus.CANCELLED, NOW)
    assert [j.id for j in jobs.list(JobStatus.CANCELLED)] == [a.id]
    assert len(jobs.list()) == 2


def test_refresh_job_counts_outcomes(store, jobs):
    store.write("fmr", "78202", {"v": 0}, "hud", NOW - 40 * DAY)

    def payload(key):
        if key == "78201":
            return {"v": 1}
        raise AdapterError("hud", "timeout")

    src = FakeSource("fmr", "hud", payload=payload)
    orch = LookupOrchestrator(store, {"fmr": src}, {"fmr": 30 * DAY})
    job = run_refresh_job(jobs, orch, "fmr", ["78201", "78202", "78203"], NOW)
    assert job.type is JobType.LOOKUP_REFRESH
    assert job.status is JobStatus.COMPLETED
    assert job.result["refreshed"] == 1
    assert job.result["degraded"] == 1
    assert job.result["failed"] == 1
    assert job.result["failures"] == {"78203": "timeout"}
    assert store.read("fmr", "78201").fetched_at == NOW


def test_refresh_job_fails_when_every_key_fails(store, jobs):
    orch = LookupOrchestrator(store, {"fmr": FakeSource("fmr", "hud", error="network")}, {"fmr": 30 * DAY})
    job = run_refresh_job(jobs, orch, "fmr", ["78201", "78202"], NOW)
    assert job.status is JobStatus.FAILED
    assert job.error_message == "all 2 lookups failed"
    assert job.result["failed"] == 2


def test_refresh_job_with_no_keys_completes(store, jobs):
    orch = LookupOrchestrator(store, {"fmr": FakeSource("fmr")}, {"fmr": 30 * DAY})
    job = run_refresh_job(jobs, orch, "fmr", [], NOW)
    assert job.status is JobStatus.COMPLETED
    assert job.result["refreshed"] == 0
