from pinqueue import tasks


def test_beat_schedule_runs_batch_task():
    entry = tasks.celery.conf.beat_schedule["publish-pinterest-batch"]
    assert entry["task"] == "pinqueue.publish_batch"
    assert entry["schedule"] == float(tasks.settings.worker_interval_seconds)


def test_publish_batch_uses_worker_services(services, job_factory, monkeypatch):
    job_factory()
    job_factory()
    monkeypatch.setattr(tasks, "get_worker_services", lambda: services)

    result = tasks.publish_batch.run(limit=1)

    assert result["processed"] == 1
    assert result["details"][0]["status"] == "ok"
    assert result["aborted"] is False
