import pytest

from pinqueue.memory import InMemoryCredentialStore
from pinqueue.models import JobStatus
from pinqueue.pinterest import PinterestAPIError
from pinqueue.services import build_services


def test_mapped_job_is_posted(services, pinterest, job_factory):
    job = job_factory(board_slug="diner-italien")
    pinterest.outcomes.append({"id": "555"})

    summary = services.dispatcher.run_batch(1)

    assert summary.processed == 1
    assert summary.details[0].id == job.id
    assert summary.details[0].status == "ok"
    assert pinterest.calls[0]["board_id"] == "11223"
    stored = services.store.get(job.id)
    assert stored.status == JobStatus.POSTED
    assert stored.external_post_id == "555"
    assert stored.published_at is not None
    assert stored.locked_at is None


def test_unmapped_job_fails_and_batch_continues(services, pinterest, job_factory):
    unmapped = job_factory(board_slug="unmapped")
    mapped = job_factory(board_slug="diner-italien")

    summary = services.dispatcher.run_batch(5)

    assert summary.processed == 2
    assert not summary.aborted
    outcomes = {d.id: d for d in summary.details}
    assert outcomes[unmapped.id].status == "failed"
    assert outcomes[unmapped.id].result["kind"] == "UNMAPPED_BOARD"
    assert outcomes[mapped.id].status == "ok"

    failed = services.store.get(unmapped.id)
    assert failed.status == JobStatus.FAILED
    assert failed.attempts == 1
    assert "unmapped" in failed.publish_error
    assert services.store.get(mapped.id).status == JobStatus.POSTED


def test_provider_error_marks_job_failed(services, pinterest, job_factory):
    job = job_factory()
    pinterest.outcomes.append(PinterestAPIError(500, "Internal error", "1"))

    summary = services.dispatcher.run_batch(5)

    assert summary.details[0].status == "failed"
    assert summary.details[0].result == {"kind": "PROVIDER_ERROR", "error": "Internal error", "code": "1"}
    assert services.store.get(job.id).status == JobStatus.FAILED


@pytest.fixture
def unconfigured(settings, store, boards, pinterest, clock, sleeper):
    def build(release_on_abort):
        cfg = settings.model_copy(update={"release_on_abort": release_on_abort})
        return build_services(
            cfg, store=store, boards=boards, credentials=InMemoryCredentialStore(),
            client_factory=pinterest.factory, clock=clock, sleep=sleeper,
        )
    return build


def test_not_configured_aborts_batch_and_releases_rest(unconfigured, store, pinterest, job_factory):
    jobs = [job_factory() for _ in range(3)]
    services = unconfigured(True)

    summary = services.dispatcher.run_batch(5)

    assert summary.aborted
    assert summary.processed == 1
    first = store.get(summary.details[0].id)
    assert first.status == JobStatus.FAILED
    assert first.attempts == 1
    assert summary.details[0].result["code"] == "PINTEREST_NOT_CONFIGURED"

    rest = [j.id for j in jobs if j.id != first.id]
    assert sorted(summary.released) == sorted(rest)
    for job_id in rest:
        job = store.get(job_id)
        assert job.status == JobStatus.RENDERED
        assert job.locked_at is None
        assert job.attempts == 0
    assert pinterest.calls == []


def test_not_configured_without_release_leaves_rest_locked(unconfigured, store, job_factory):
    jobs = [job_factory() for _ in range(3)]
    services = unconfigured(False)

    summary = services.dispatcher.run_batch(5)

    assert summary.aborted
    assert summary.released == []
    untouched = [store.get(j.id) for j in jobs if j.id != summary.details[0].id]
    assert all(j.status == JobStatus.PROCESSING and j.locked_at is not None for j in untouched)
    assert all(j.attempts == 0 for j in untouched)


def test_unexpected_exception_fails_only_that_job(services, job_factory, monkeypatch):
    first = job_factory()
    second = job_factory()
    original = services.publisher.publish

    def flaky(job):
        if job.id == first.id:
            raise RuntimeError("decoder exploded")
        return original(job)

    monkeypatch.setattr(services.publisher, "publish", flaky)

    summary = services.dispatcher.run_batch(5)

    assert services.store.get(first.id).status == JobStatus.FAILED
    assert services.store.get(first.id).publish_error == "decoder exploded"
    assert services.store.get(second.id).status == JobStatus.POSTED
    assert summary.processed == 2


def test_empty_queue(services):
    summary = services.dispatcher.run_batch(5)
    assert summary.processed == 0
    assert summary.details == []


def test_posted_job_is_never_republished(services, pinterest, job_factory):
    job_factory()
    services.dispatcher.run_batch(5)
    services.dispatcher.run_batch(5)
    assert len(pinterest.calls) == 1


def test_publish_one_claims_specific_job(services, job_factory):
    job_factory()
    target = job_factory()

    result = services.dispatcher.publish_one(target.id)

    assert result.id == target.id
    assert result.status == "ok"
    assert services.store.get(target.id).status == JobStatus.POSTED


def test_store_outage_on_success_does_not_stop_batch(services, store, pinterest, job_factory, monkeypatch):
    first = job_factory()
    second = job_factory()
    original = store.mark_succeeded

    def flaky(job_id, *args, **kwargs):
        if job_id == first.id:
            raise ConnectionError("postgrest down")
        return original(job_id, *args, **kwargs)

    monkeypatch.setattr(store, "mark_succeeded", flaky)

    summary = services.dispatcher.run_batch(5)

    outcomes = {d.id: d for d in summary.details}
    assert summary.processed == 2
    assert outcomes[first.id].status == "failed"
    assert outcomes[first.id].result["error"] == "postgrest down"
    assert outcomes[second.id].status == "ok"
    assert store.get(second.id).status == JobStatus.POSTED
    assert len(pinterest.calls) == 2


def test_store_outage_on_failure_does_not_stop_batch(services, store, pinterest, job_factory, monkeypatch):
    first = job_factory()
    second = job_factory()
    pinterest.outcomes.append(PinterestAPIError(500, "Internal error"))

    def broken(job_id, reason):
        raise ConnectionError("postgrest down")

    monkeypatch.setattr(store, "mark_failed", broken)

    summary = services.dispatcher.run_batch(5)

    assert summary.processed == 2
    assert [d.status for d in summary.details] == ["failed", "ok"]
    assert store.get(second.id).status == JobStatus.POSTED
