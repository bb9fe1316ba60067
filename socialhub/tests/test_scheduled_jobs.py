"""
Tests for the scheduled job sweep
"""
from datetime import timedelta

import pytest
from unittest.mock import patch

from socialhub.db.models import JobStatus, ScheduledJob, utcnow
from socialhub.services.scheduled_job_service import (
    JOB_TYPE_FETCH_INSIGHTS,
    ScheduledJobService,
    UnknownJobTypeError,
)
from socialhub.services.scheduled_publisher import JOB_TYPE_PUBLISH_POST
from socialhub.tasks.scheduled_job_tasks import process_scheduled_jobs
from socialhub.tests.test_scheduled_publisher import make_post


def add_job(db, tenant, job_type, payload, run_at):
    job = ScheduledJob(tenant_id=tenant.id, job_type=job_type, payload=payload, run_at=run_at, status=JobStatus.PENDING)
    db.add(job)
    db.commit()
    return job


class TestScheduledJobService:

    def test_due_publish_job_completes(self, test_db, tenant, facebook_channel):
        post = make_post(test_db, facebook_channel)
        job = add_job(test_db, tenant, JOB_TYPE_PUBLISH_POST, {"post_id": post.id}, utcnow() - timedelta(minutes=1))

        with patch("socialhub.services.scheduled_job_service._enqueue_publish") as enqueue:
            results = ScheduledJobService(test_db).process_due_jobs()

        assert results == {"completed": 1, "failed": 0}
        enqueue.assert_called_once_with(post.id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert job.completed_at is not None

    def test_insights_job_enqueues_fetch(self, test_db, tenant, instagram_channel):
        add_job(test_db, tenant, JOB_TYPE_FETCH_INSIGHTS, {"channel_id": instagram_channel.id}, utcnow() - timedelta(seconds=5))

        with patch("socialhub.services.scheduled_job_service._enqueue_insights") as enqueue:
            ScheduledJobService(test_db).process_due_jobs()

        enqueue.assert_called_once_with(instagram_channel.id)

    def test_future_job_not_run(self, test_db, tenant, facebook_channel):
        post = make_post(test_db, facebook_channel)
        job = add_job(test_db, tenant, JOB_TYPE_PUBLISH_POST, {"post_id": post.id}, utcnow() + timedelta(hours=1))

        with patch("socialhub.services.scheduled_job_service._enqueue_publish") as enqueue:
            results = ScheduledJobService(test_db).process_due_jobs()

        assert results == {"completed": 0, "failed": 0}
        enqueue.assert_not_called()
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0

    def test_unknown_job_type_fails(self, test_db, tenant):
        job = add_job(test_db, tenant, "sync_catalog", {}, utcnow() - timedelta(minutes=1))

        results = ScheduledJobService(test_db).process_due_jobs()

        assert results == {"completed": 0, "failed": 1}
        assert job.status == JobStatus.FAILED
        assert "Unknown job type" in job.error

    def test_missing_post_fails_job(self, test_db, tenant):
        job = add_job(test_db, tenant, JOB_TYPE_PUBLISH_POST, {"post_id": 999}, utcnow() - timedelta(minutes=1))

        with patch("socialhub.services.scheduled_job_service._enqueue_publish") as enqueue:
            ScheduledJobService(test_db).process_due_jobs()

        enqueue.assert_not_called()
        assert job.status == JobStatus.FAILED
        assert job.error == "Post not found: 999"

    def test_jobs_run_once(self, test_db, tenant, facebook_channel):
        post = make_post(test_db, facebook_channel)
        add_job(test_db, tenant, JOB_TYPE_PUBLISH_POST, {"post_id": post.id}, utcnow() - timedelta(minutes=1))
        service = ScheduledJobService(test_db)

        with patch("socialhub.services.scheduled_job_service._enqueue_publish") as enqueue:
            service.process_due_jobs()
            service.process_due_jobs()

        assert enqueue.call_count == 1

    def test_schedule_rejects_unknown_type(self, test_db, tenant):
        with pytest.raises(UnknownJobTypeError):
            ScheduledJobService(test_db).schedule(tenant.id, "sync_catalog", {}, utcnow())

    def test_schedule_writes_pending_job(self, test_db, tenant, facebook_channel):
        job = ScheduledJobService(test_db).schedule(
            tenant.id, JOB_TYPE_FETCH_INSIGHTS, {"channel_id": facebook_channel.id}, utcnow() + timedelta(days=1)
        )
        assert job.id is not None
        assert job.status == JobStatus.PENDING


def test_process_scheduled_jobs_task(test_db, tenant, facebook_channel):
    post = make_post(test_db, facebook_channel)
    add_job(test_db, tenant, JOB_TYPE_PUBLISH_POST, {"post_id": post.id}, utcnow() - timedelta(minutes=1))

    with patch("socialhub.services.scheduled_job_service._enqueue_publish"):
        result = process_scheduled_jobs()

    assert result == {"completed": 1, "failed": 0}
