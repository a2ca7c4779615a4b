"""Process-wide, content-addressed cache of generated questions."""
from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from agents.types import Question, utcnow

logger = logging.getLogger(__name__)

BucketKey = Tuple[str, str, str]


@dataclass
class QuestionStats:
    """Mutable usage statistics; best-effort, never part of the question contract."""

    uses: int = 0
    last_used: Optional[dt.datetime] = None
    effectiveness: float = 0.0
    outcomes: int = 0
    inserted_seq: int = 0


@dataclass
class _Entry:
    question: Question
    stats: QuestionStats = field(default_factory=QuestionStats)


class QuestionCache:
    """Buckets keyed by ``(focus_kind, topic, difficulty)`` plus a hash index.

    Questions are frozen once published; only their statistics change. All
    index mutation happens under one re-entrant lock so a bucket never exposes
    a half-inserted record.
    """

    def __init__(self, bucket_cap: int = 25) -> None:
        if bucket_cap < 1:
            raise ValueError("bucket_cap must be >= 1")
        self._bucket_cap = bucket_cap
        self._by_hash: Dict[str, _Entry] = {}
        self._buckets: Dict[BucketKey, List[str]] = {}
        self._seq = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_hash)

    def __contains__(self, question_hash: object) -> bool:
        with self._lock:
            return question_hash in self._by_hash

    @staticmethod
    def bucket_key(focus_kind: str, topic: str, difficulty: str) -> BucketKey:
        return (focus_kind, topic, difficulty)

    def lookup(
        self,
        focus_kind: str,
        topic: str,
        difficulty: str,
        excluding: Iterable[str] = (),
    ) -> Optional[Question]:
        """Return the least-used question in the bucket not in ``excluding``."""

        skip = set(excluding)
        with self._lock:
            hashes = self._buckets.get(self.bucket_key(focus_kind, topic, difficulty), [])
            candidates = [self._by_hash[h] for h in hashes if h not in skip]
            if not candidates:
                return None
            best = min(candidates, key=lambda entry: (entry.stats.uses, entry.stats.inserted_seq))
            return best.question

    def insert(self, question: Question) -> str:
        """Publish ``question``; idempotent by content hash."""

        question_hash = question.question_hash
        with self._lock:
            if question_hash in self._by_hash:
                return question_hash
            self._seq += 1
            self._by_hash[question_hash] = _Entry(question, QuestionStats(inserted_seq=self._seq))
            key = self.bucket_key(question.focus_kind, question.topic, question.difficulty)
            bucket = self._buckets.setdefault(key, [])
            bucket.append(question_hash)
            if len(bucket) > self._bucket_cap:
                self._evict(key, keep=question_hash)
        return question_hash

    def record_use(self, question_hash: str, now: Optional[dt.datetime] = None) -> None:
        with self._lock:
            entry = self._by_hash.get(question_hash)
            if entry is None:
                return
            entry.stats.uses += 1
            entry.stats.last_used = now or utcnow()

    def record_outcome(self, question_hash: str, overall_score: int) -> None:
        """Fold a turn's score into the running effectiveness mean.

        Effectiveness is the mean of ``100 - overall_score``.
        """

        with self._lock:
            entry = self._by_hash.get(question_hash)
            if entry is None:
                return
            stats = entry.stats
            stats.outcomes += 1
            value = 100 - max(0, min(100, int(overall_score)))
            stats.effectiveness += (value - stats.effectiveness) / stats.outcomes

    def get(self, question_hash: str) -> Optional[Question]:
        with self._lock:
            entry = self._by_hash.get(question_hash)
            return entry.question if entry else None

    def stats(self, question_hash: str) -> Optional[QuestionStats]:
        with self._lock:
            entry = self._by_hash.get(question_hash)
            if entry is None:
                return None
            return QuestionStats(**vars(entry.stats))

    def _evict(self, key: BucketKey, keep: str) -> None:
        bucket = self._buckets[key]
        victims = [h for h in bucket if h != keep]
        victim = min(
            victims,
            key=lambda h: (
                self._by_hash[h].stats.effectiveness,
                self._by_hash[h].stats.uses,
                self._by_hash[h].stats.inserted_seq,
            ),
        )
        bucket.remove(victim)
        del self._by_hash[victim]
        logger.debug("Evicted question %s from bucket %s", victim, key)


__all__ = ["QuestionCache", "QuestionStats"]
