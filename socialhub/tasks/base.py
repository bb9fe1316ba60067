"""
Base Celery task for the pipeline

Carries the task's TaskRetryPolicy and turns a failure into either a
scheduled retry or a final re-raise.
"""
import logging

from celery import Task

from socialhub.core.exceptions import DispatchError, PublishValidationError
from socialhub.core.monitoring import metrics
from socialhub.tasks.policies import NO_RETRY, TaskRetryPolicy

logger = logging.getLogger(__name__)

# Errors that fail the same way on every attempt
NON_RETRYABLE_ERRORS = (PublishValidationError, DispatchError, LookupError)


class PipelineTask(Task):
    retry_policy: TaskRetryPolicy = NO_RETRY

    def retry_or_raise(self, exc: Exception):
        """
        Schedule the next attempt per retry_policy, or re-raise exc when the
        error is permanent or attempts are used up
        """
        attempts_made = self.request.retries + 1
        policy = self.retry_policy

        if isinstance(exc, NON_RETRYABLE_ERRORS):
            logger.error(f"Task {self.name} failed permanently: {exc}")
            raise exc

        if not policy.should_retry(attempts_made):
            logger.error(f"Task {self.name} failed after {attempts_made} attempt(s): {exc}")
            raise exc

        countdown = policy.countdown(attempts_made)
        metrics.record_task_retry(self.name)
        logger.warning(
            f"Task {self.name} attempt {attempts_made}/{policy.max_attempts} failed, "
            f"retrying in {countdown}s: {exc}"
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=policy.max_retries)
