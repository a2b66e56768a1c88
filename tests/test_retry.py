import pytest

from pinqueue.errors import ConcurrencyConflict, NotFound
from pinqueue.models import JobStatus
from pinqueue.pinterest import PinterestAPIError
from pinqueue.retry import LocalQueue, RetryFacade


def failed_job(store, job_factory, reason="Limite API Dépassée"):
    job = job_factory()
    store.claim(job.id)
    return store.mark_failed(job.id, reason)


def test_retry_succeeds_on_third_attempt(services, store, pinterest, sleeper, job_factory):
    job = failed_job(store, job_factory)
    store.reset_for_retry(job.id)
    assert store.get(job.id).attempts == 0
    pinterest.outcomes.extend([
        PinterestAPIError(429, "Rate limit"),
        PinterestAPIError(503, "Unavailable"),
        {"id": "pin-777"},
    ])

    outcome = services.retry.retry(job.id)

    assert outcome.success
    assert outcome.attempts == 3
    assert len(pinterest.calls) == 3
    assert sleeper.delays == [1.0, 2.0]
    stored = store.get(job.id)
    assert stored.status == JobStatus.POSTED
    assert stored.external_post_id == "pin-777"
    assert stored.publish_error is None
    assert outcome.job == stored


def test_retry_gives_up_after_max_attempts(services, store, pinterest, sleeper, job_factory):
    job = failed_job(store, job_factory)
    pinterest.outcomes.extend([PinterestAPIError(500, f"boom {i}") for i in range(3)])

    outcome = services.retry.retry(job.id)

    assert not outcome.success
    assert outcome.attempts == 3
    assert outcome.error["kind"] == "PROVIDER_ERROR"
    assert sleeper.delays == [1.0, 2.0]
    stored = store.get(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.attempts == 3
    assert stored.publish_error == "boom 2"
    assert stored.locked_at is None


def test_unmapped_board_is_not_retried(services, store, pinterest, sleeper, job_factory):
    job = job_factory(board_slug="unmapped")
    store.claim(job.id)
    store.mark_failed(job.id, "No active board mapped for 'unmapped'")

    outcome = services.retry.retry(job.id)

    assert outcome.attempts == 1
    assert outcome.error["kind"] == "UNMAPPED_BOARD"
    assert sleeper.delays == []
    assert pinterest.calls == []
    assert store.get(job.id).status == JobStatus.FAILED


def test_retry_of_posted_job_conflicts(services, store, job_factory):
    job = job_factory()
    store.claim(job.id)
    store.mark_succeeded(job.id, "pin-1")

    with pytest.raises(ConcurrencyConflict):
        services.retry.retry(job.id)
    assert store.get(job.id).published_at is not None


def test_retry_unknown_job(services):
    with pytest.raises(NotFound):
        services.retry.retry("missing")


def test_backoff_grows_exponentially(store, services):
    facade = RetryFacade(store, services.publisher, backoff_base=1.0)
    assert [facade.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


def test_persistence_failure_reloads_queue(services, store, pinterest, sleeper, job_factory, monkeypatch):
    job = failed_job(store, job_factory)

    def broken(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(store, "mark_succeeded", broken)
    view = LocalQueue(store)
    facade = RetryFacade(store, services.publisher, sleep=sleeper, view=view)

    outcome = facade.retry(job.id)

    assert outcome.refetched
    assert not outcome.success
    assert outcome.error["kind"] == "PERSISTENCE_ERROR"
    assert outcome.job == store.get(job.id)
    assert view.get(job.id) == store.get(job.id)


def test_local_queue_tentative_then_reconcile(store, job_factory):
    job = failed_job(store, job_factory)
    view = LocalQueue(store)
    view.refresh()

    tentative = view.apply_tentative(job.id, status=JobStatus.RENDERED, publish_error=None)
    assert tentative.status == JobStatus.RENDERED
    assert store.get(job.id).status == JobStatus.FAILED

    view.refresh()
    assert view.get(job.id).status == JobStatus.FAILED
    assert view.apply_tentative("missing", status=JobStatus.RENDERED) is None
