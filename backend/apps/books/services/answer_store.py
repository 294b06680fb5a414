from __future__ import annotations

import json
import logging
from typing import Any, Dict, Tuple

from django.conf import settings
from django.core.cache import caches
from django.db import DatabaseError
from django.utils import timezone

from ..models import ProposalState
from .schemas import AnswerMap

logger = logging.getLogger(__name__)


def step_key(thread_id: Any) -> str:
    return f"proposalStep:{thread_id}"


def answers_key(thread_id: Any) -> str:
    return f"proposalAnswers:{thread_id}"


def unsynced_key(thread_id: Any) -> str:
    return f"proposalUnsynced:{thread_id}"


class ProposalStateStore:
    """
    Durable (counter, answers) per thread with a best-effort cache mirror.

    The database row is authoritative whenever it can be read; a read that
    finds no row means the thread has no proposal state, and any mirror left
    behind (for example by a reset in another process) is dropped. The mirror
    is only used when the read fails, or when this process's last write for
    the thread failed and left the mirror marked unsynced.
    """

    def __init__(self, cache=None) -> None:
        self.cache = cache if cache is not None else caches[settings.PROPOSAL_STATE_CACHE_ALIAS]

    def get(self, thread_id: Any) -> Tuple[int, AnswerMap]:
        try:
            row = ProposalState.objects.filter(thread_id=thread_id).first()
        except DatabaseError:
            logger.warning("Proposal state read failed for thread %s; using cache mirror", thread_id, exc_info=True)
            return self._read_cache(thread_id)

        if row is None:
            if self._is_unsynced(thread_id):
                logger.info("No stored proposal state for thread %s; using unsynced cache mirror", thread_id)
                return self._read_cache(thread_id)
            self._drop_cache(thread_id)
            return 0, {}

        count = _to_count(row.step_idx)
        answers = _to_answer_map(row.answers)
        self._write_cache(thread_id, count, answers, unsynced=False)
        return count, answers

    def put(self, thread_id: Any, count: int, answers: AnswerMap) -> bool:
        count = _to_count(count)
        answers = _to_answer_map(answers)
        persisted = True
        try:
            ProposalState.objects.update_or_create(
                thread_id=thread_id,
                defaults={"step_idx": count, "answers": answers},
            )
        except DatabaseError:
            persisted = False
            logger.warning("Proposal state write failed for thread %s", thread_id, exc_info=True)
        self._write_cache(thread_id, count, answers, unsynced=not persisted)
        return persisted

    def clear(self, thread_id: Any) -> None:
        ProposalState.objects.filter(thread_id=thread_id).delete()
        self._drop_cache(thread_id)

    def is_summarized(self, thread_id: Any) -> bool:
        try:
            return ProposalState.objects.filter(thread_id=thread_id, summarized_at__isnull=False).exists()
        except DatabaseError:
            logger.warning("Proposal phase read failed for thread %s", thread_id, exc_info=True)
            return False

    def mark_summarized(self, thread_id: Any) -> None:
        try:
            updated = ProposalState.objects.filter(thread_id=thread_id).update(summarized_at=timezone.now())
            if not updated:
                ProposalState.objects.create(thread_id=thread_id, summarized_at=timezone.now())
        except DatabaseError:
            logger.warning("Failed to mark thread %s summarized", thread_id, exc_info=True)

    def _is_unsynced(self, thread_id: Any) -> bool:
        try:
            return bool(self.cache.get(unsynced_key(thread_id)))
        except Exception:
            logger.warning("Proposal cache read failed for thread %s", thread_id, exc_info=True)
            return False

    def _read_cache(self, thread_id: Any) -> Tuple[int, AnswerMap]:
        try:
            values: Dict[str, Any] = self.cache.get_many([step_key(thread_id), answers_key(thread_id)])
        except Exception:
            logger.warning("Proposal cache read failed for thread %s", thread_id, exc_info=True)
            return 0, {}
        return _to_count(values.get(step_key(thread_id), 0)), _to_answer_map(values.get(answers_key(thread_id), {}))

    def _write_cache(self, thread_id: Any, count: int, answers: AnswerMap, unsynced: bool) -> None:
        try:
            self.cache.set_many({step_key(thread_id): count, answers_key(thread_id): dict(answers)}, timeout=None)
            if unsynced:
                self.cache.set(unsynced_key(thread_id), True, timeout=None)
            else:
                self.cache.delete(unsynced_key(thread_id))
        except Exception:
            logger.warning("Proposal cache write failed for thread %s", thread_id, exc_info=True)

    def _drop_cache(self, thread_id: Any) -> None:
        try:
            self.cache.delete_many([step_key(thread_id), answers_key(thread_id), unsynced_key(thread_id)])
        except Exception:
            logger.warning("Failed to clear proposal cache for thread %s", thread_id, exc_info=True)


def _to_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _to_answer_map(value: Any) -> AnswerMap:
    if not isinstance(value, dict):
        return {}
    return {str(k): v if isinstance(v, str) else json.dumps(v, ensure_ascii=False) for k, v in value.items()}
