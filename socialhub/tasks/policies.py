"""
Task retry policies

Every task kind declares how many attempts it gets and how long to wait
between them. The delay before retry n (n attempts already made) is
backoff[n - 1], clamped to the last entry.
"""
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class TaskRetryPolicy:
    max_attempts: int = 1
    backoff: Tuple[int, ...] = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_attempts > 1 and not self.backoff:
            raise ValueError("A retrying policy needs a backoff schedule")

    @property
    def max_retries(self) -> int:
        return self.max_attempts - 1

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts

    def countdown(self, attempts_made: int) -> int:
        """
        Seconds to wait before the next attempt

        Args:
            attempts_made: Attempts already run, starting at 1
        """
        if not self.backoff:
            return 0
        index = min(max(attempts_made, 1), len(self.backoff)) - 1
        return self.backoff[index]


STANDARD_BACKOFF = (60, 300, 900)  # 1m, 5m, 15m

NO_RETRY = TaskRetryPolicy(max_attempts=1)

RETRY_POLICIES: Dict[str, TaskRetryPolicy] = {
    'publish_post': TaskRetryPolicy(max_attempts=3, backoff=STANDARD_BACKOFF),
    'send_outbound_message': TaskRetryPolicy(max_attempts=3, backoff=STANDARD_BACKOFF),
    'refresh_channel_token': TaskRetryPolicy(max_attempts=3, backoff=STANDARD_BACKOFF),
    'fetch_channel_insights': TaskRetryPolicy(max_attempts=2, backoff=(60,)),
    # Failure is terminal on the WebhookEvent row; replay is explicit
    'process_meta_webhook': NO_RETRY,
    'process_whatsapp_webhook': NO_RETRY,
    'replay_webhook_event': NO_RETRY,
    'process_scheduled_jobs': NO_RETRY,
    'refresh_expiring_tokens': NO_RETRY,
    'enqueue_daily_insights': NO_RETRY,
    'purge_processed_webhook_events': NO_RETRY,
}


def get_retry_policy(task_name: str) -> TaskRetryPolicy:
    """Look up by short task name; raises KeyError for tasks without a policy"""
    return RETRY_POLICIES[task_name.rsplit('.', 1)[-1]]
