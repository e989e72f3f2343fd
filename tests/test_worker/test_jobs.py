"""
Tests for the session purge job and its scheduling.
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.config import settings
from app.worker import jobs


class FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue_in(self, delay, func, **kwargs):
        self.enqueued.append((delay, func, kwargs))
        return SimpleNamespace(id=f"job-{len(self.enqueued)}")


class TestSchedulePurge:

    def test_explicit_delay(self):
        queue = FakeQueue()
        assert jobs.schedule_purge(queue, delay_minutes=0) == "job-1"
        delay, func, kwargs = queue.enqueued[0]
        assert delay == timedelta(0)
        assert func is jobs.purge_expired_sessions_job
        assert kwargs["job_timeout"] == settings.JOB_TIMEOUT_SECONDS

    def test_default_interval(self):
        queue = FakeQueue()
        jobs.schedule_purge(queue)
        assert queue.enqueued[0][0] == timedelta(minutes=settings.PURGE_INTERVAL_MINUTES)


class TestPurgeJob:

    def test_reports_count_and_reschedules(self, monkeypatch):
        queue = FakeQueue()

        async def purge():
            return 3

        monkeypatch.setattr(jobs, "_purge_async", purge)
        monkeypatch.setattr(jobs, "get_queue", lambda: queue)

        assert jobs.purge_expired_sessions_job() == {"purged": 3}
        assert len(queue.enqueued) == 1

    def test_failure_still_reschedules(self, monkeypatch):
        queue = FakeQueue()

        async def purge():
            raise RuntimeError("database down")

        monkeypatch.setattr(jobs, "_purge_async", purge)
        monkeypatch.setattr(jobs, "get_queue", lambda: queue)

        with pytest.raises(RuntimeError):
            jobs.purge_expired_sessions_job()
        assert len(queue.enqueued) == 1

    def test_no_reschedule(self, monkeypatch):
        async def purge():
            return 0

        monkeypatch.setattr(jobs, "_purge_async", purge)
        monkeypatch.setattr(jobs, "get_queue", lambda: pytest.fail("queue should not be used"))
        assert jobs.purge_expired_sessions_job(reschedule=False) == {"purged": 0}
