"""Per-test evaluation lock.

The optimization engine does no locking of its own. Overlapping
evaluations of the same test (e.g. two ingestion batches in quick
succession) could both try to promote a winner, so the API serializes
them with a short-lived Redis key.
"""
import redis
from typing import List, Optional
from contextlib import contextmanager
import uuid


class EvaluationLock:
    """Redis-based mutual exclusion for evaluations of one test."""

    KEY_PREFIX = "evaluation:lock:"

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = 30):
        self.redis = redis_client
        # Key expires on its own if a worker dies while holding it
        self.ttl_seconds = ttl_seconds

    def _get_lock_key(self, test_id: int) -> str:
        """Get Redis key for a test's evaluation lock."""
        return f"{self.KEY_PREFIX}{test_id}"

    def acquire(self, test_id: int) -> Optional[str]:
        """
        Try to take the lock for a test.

        Returns:
            Token to pass to release(), or None if another evaluation holds it
        """
        token = str(uuid.uuid4())
        acquired = self.redis.set(
            self._get_lock_key(test_id),
            token,
            nx=True,
            ex=self.ttl_seconds
        )
        return token if acquired else None

    def release(self, test_id: int, token: str) -> None:
        """Release the lock if it is still ours (it may have expired and been retaken)."""
        key = self._get_lock_key(test_id)
        current = self.redis.get(key)
        if isinstance(current, bytes):
            current = current.decode("utf-8")
        if current == token:
            self.redis.delete(key)

    def active_evaluations(self) -> List[int]:
        """Ids of tests whose evaluation lock is currently held."""
        test_ids = []
        for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            test_ids.append(int(key[len(self.KEY_PREFIX):]))
        return sorted(test_ids)

    @contextmanager
    def hold(self, test_id: int):
        """
        Context manager around one evaluation.

        Usage:
            with evaluation_lock.hold(test_id):
                engine.evaluate(test_id)

        Raises:
            EvaluationInProgress: If another evaluation of the test is running
        """
        token = self.acquire(test_id)
        if token is None:
            raise EvaluationInProgress(
                f"An evaluation of test {test_id} is already in progress"
            )

        try:
            yield token
        finally:
            self.release(test_id, token)


class EvaluationInProgress(Exception):
    """Raised when a test is already being evaluated."""
    pass
