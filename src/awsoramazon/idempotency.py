import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from .config import settings
from .questions import QUESTION_PK
from .store import ConditionFailed, KeyValueStore

logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = "IDEMPOTENCY#"


@dataclass
class CachedResponse:
    status_code: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)


class IdempotencyCache:
    """Stores finished grading responses by Idempotency-Key.

    A stored response is replayed as-is for the lifetime of the record and is
    never overwritten by a later request with the same key.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS

    @staticmethod
    def sort_key(key: str) -> str:
        return f"{IDEMPOTENCY_PREFIX}{key}"

    def find(self, key: str) -> Optional[CachedResponse]:
        item = self.store.get(QUESTION_PK, self.sort_key(key))
        if not item or "response" not in item:
            return None
        response = item["response"]
        logger.info(f"Replaying cached response for idempotency key {key}")
        return CachedResponse(
            status_code=response["statusCode"],
            body=response["body"],
            headers=response.get("headers", {}),
        )

    def save(self, key: str, response: CachedResponse) -> CachedResponse:
        """Stores `response` unless a racing request stored one first, and
        returns whichever response is now on record for `key`."""
        ttl = int(time.time()) + self.ttl_seconds
        item = {
            "PK": QUESTION_PK,
            "SK": self.sort_key(key),
            "response": {
                "statusCode": response.status_code,
                "headers": response.headers,
                "body": response.body,
            },
            "ttl": ttl,
        }
        try:
            self.store.put(
                QUESTION_PK,
                self.sort_key(key),
                item,
                if_not_exists=True,
                expire_at=ttl,
                index=False,
            )
        except ConditionFailed:
            existing = self.find(key)
            if existing:
                return existing
        return response
