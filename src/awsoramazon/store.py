import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from .config import Settings

logger = logging.getLogger(__name__)

Item = Dict[str, Any]


class ConditionFailed(Exception):
    """Raised when a conditional put finds an item already at the key."""


@dataclass
class QueryResult:
    items: List[Item] = field(default_factory=list)
    last_key: Optional[Dict[str, str]] = None


# --- Storage Layer: key-value table ---
class KeyValueStore(ABC):
    """A single table of JSON items addressed by partition key + sort key."""

    @abstractmethod
    def get(self, pk: str, sk: str) -> Optional[Item]:
        pass

    @abstractmethod
    def put(
        self,
        pk: str,
        sk: str,
        item: Item,
        if_not_exists: bool = False,
        expire_at: Optional[int] = None,
        index: bool = True,
    ) -> None:
        """Writes `item`. `expire_at` is an epoch-seconds expiry for the key.

        With `if_not_exists`, raises ConditionFailed when the key is taken.
        Items written with `index=False` are reachable by exact key only and
        never appear in `query` results.
        """

    @abstractmethod
    def query(
        self,
        pk: str,
        prefix: str,
        limit: int,
        start_key: Optional[Dict[str, str]] = None,
    ) -> QueryResult:
        """Returns up to `limit` items whose sort key starts with `prefix`,
        in sort key order, after `start_key` when given."""

    @abstractmethod
    def ping(self) -> bool:
        pass


def _prefix_upper_bound(prefix: str) -> str:
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class RedisStore(KeyValueStore):
    """Items are JSON strings at `{table}:{pk}:{sk}`; a sorted set at
    `{table}:{pk}` indexes the sort keys lexicographically for range scans.
    Expired items are dropped from the index lazily on read."""

    def __init__(self, client: redis.Redis, table: str):
        self.client = client
        self.table = table

    def _item_key(self, pk: str, sk: str) -> str:
        return f"{self.table}:{pk}:{sk}"

    def _index_key(self, pk: str) -> str:
        return f"{self.table}:{pk}"

    def get(self, pk: str, sk: str) -> Optional[Item]:
        raw = self.client.get(self._item_key(pk, sk))
        if raw is None:
            return None
        return json.loads(raw)

    def put(
        self,
        pk: str,
        sk: str,
        item: Item,
        if_not_exists: bool = False,
        expire_at: Optional[int] = None,
        index: bool = True,
    ) -> None:
        data = json.dumps(item)
        key = self._item_key(pk, sk)
        if if_not_exists:
            if not self.client.set(key, data, nx=True, exat=expire_at):
                raise ConditionFailed(key)
            if index:
                self.client.zadd(self._index_key(pk), {sk: 0})
            return

        if not index:
            self.client.set(key, data, exat=expire_at)
            return
        pipe = self.client.pipeline()
        pipe.set(key, data, exat=expire_at)
        pipe.zadd(self._index_key(pk), {sk: 0})
        pipe.execute()

    def query(
        self,
        pk: str,
        prefix: str,
        limit: int,
        start_key: Optional[Dict[str, str]] = None,
    ) -> QueryResult:
        index_key = self._index_key(pk)
        start_sk = (start_key or {}).get("SK")
        low = f"({start_sk}" if start_sk else f"[{prefix}"
        high = f"({_prefix_upper_bound(prefix)}"

        # One extra member tells us whether another page exists.
        members = self.client.zrangebylex(index_key, low, high, start=0, num=limit + 1)
        has_more = len(members) > limit
        members = members[:limit]
        if not members:
            return QueryResult()

        raws = self.client.mget([self._item_key(pk, sk) for sk in members])
        items = []
        missing = []
        for sk, raw in zip(members, raws):
            if raw is None:
                missing.append(sk)
                continue
            items.append(json.loads(raw))
        if missing:
            self._prune(pk, missing)

        last_key = {"PK": pk, "SK": members[-1]} if has_more else None
        return QueryResult(items=items, last_key=last_key)

    def _prune(self, pk: str, members: List[str]) -> int:
        """Removes index members whose item key is still absent.

        The keys are watched, so a write landing between the existence check
        and the ZREM aborts the prune; the next query retries it.
        """
        index_key = self._index_key(pk)
        keys = [self._item_key(pk, sk) for sk in members]
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(*keys)
                gone = [sk for sk, key in zip(members, keys) if not pipe.exists(key)]
                if not gone:
                    pipe.unwatch()
                    return 0
                pipe.multi()
                pipe.zrem(index_key, *gone)
                pipe.execute()
            except redis.WatchError:
                logger.info(f"Index prune on {index_key} raced a write, skipped")
                return 0
        logger.info(f"Dropped {len(gone)} expired keys from index {index_key}")
        return len(gone)

    def ping(self) -> bool:
        return bool(self.client.ping())


class MemoryStore(KeyValueStore):
    """In-process table with the same semantics as RedisStore."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._items: Dict[Tuple[str, str], Tuple[str, Optional[int], bool]] = {}
        self._lock = threading.Lock()

    def _live(self, key: Tuple[str, str]) -> Optional[str]:
        entry = self._items.get(key)
        if entry is None:
            return None
        data, expire_at, _ = entry
        if expire_at is not None and self.clock() >= expire_at:
            del self._items[key]
            return None
        return data

    def get(self, pk: str, sk: str) -> Optional[Item]:
        with self._lock:
            data = self._live((pk, sk))
        return json.loads(data) if data is not None else None

    def put(
        self,
        pk: str,
        sk: str,
        item: Item,
        if_not_exists: bool = False,
        expire_at: Optional[int] = None,
        index: bool = True,
    ) -> None:
        data = json.dumps(item)
        with self._lock:
            if if_not_exists and self._live((pk, sk)) is not None:
                raise ConditionFailed(f"{pk}:{sk}")
            self._items[(pk, sk)] = (data, expire_at, index)

    def query(
        self,
        pk: str,
        prefix: str,
        limit: int,
        start_key: Optional[Dict[str, str]] = None,
    ) -> QueryResult:
        start_sk = (start_key or {}).get("SK")
        with self._lock:
            keys = sorted(
                sk
                for (item_pk, sk), (_, _, indexed) in list(self._items.items())
                if indexed
                and item_pk == pk
                and sk.startswith(prefix)
                and (start_sk is None or sk > start_sk)
                and self._live((item_pk, sk)) is not None
            )
            has_more = len(keys) > limit
            keys = keys[:limit]
            items = [json.loads(self._items[(pk, sk)][0]) for sk in keys]

        last_key = {"PK": pk, "SK": keys[-1]} if has_more else None
        return QueryResult(items=items, last_key=last_key)

    def ping(self) -> bool:
        return True


def create_store(settings: Settings) -> KeyValueStore:
    if settings.STORE_BACKEND == "memory":
        logger.warning("Using in-memory store. Data is lost on restart.")
        return MemoryStore()
    if settings.STORE_BACKEND != "redis":
        raise ValueError(f"Unknown store backend: {settings.STORE_BACKEND}")

    client = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.STORE_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.STORE_TIMEOUT_SECONDS,
    )
    return RedisStore(client, settings.TABLE_NAME)
