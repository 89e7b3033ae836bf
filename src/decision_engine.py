import json
import uuid
import logging
from typing import Optional, List, Dict, Any

from schema import (
    DialogState,
    SafetyResult,
    RetrievalResult,
    EscalationReason,
    EscalationRecommendation,
    EscalationTicket,
    Config,
)

logger = logging.getLogger(__name__)


class EscalationAdvisor:
    """Quyết định khi nào đề xuất chuyển cho người thật. Chỉ emit intent, không persist."""

    def recommend(
        self,
        safety: Optional[SafetyResult] = None,
        retrieval: Optional[RetrievalResult] = None,
        user_requested: bool = False,
    ) -> Optional[EscalationRecommendation]:
        # === Early exits ===
        if safety is not None and safety.sensitive:
            logger.info("Decision: ESCALATE (sensitive)")
            return EscalationRecommendation(True, EscalationReason.SENSITIVE)

        if safety is not None and safety.urgent:
            logger.info("Decision: ESCALATE (urgent)")
            return EscalationRecommendation(True, EscalationReason.URGENT)

        if user_requested:
            logger.info("Decision: ESCALATE (user_requested)")
            return EscalationRecommendation(True, EscalationReason.USER_REQUESTED)

        if retrieval is not None and (retrieval.total == 0 or retrieval.low_confidence):
            logger.info(
                f"Decision: ESCALATE (low_confidence, total={retrieval.total}, "
                f"top_score={retrieval.top_score})"
            )
            return EscalationRecommendation(True, EscalationReason.LOW_CONFIDENCE)

        return None


class SessionManager:
    """Lưu DialogState theo session key; Redis nếu có, fallback in-memory."""

    KEY_PREFIX = "dialog_state:"

    def __init__(self, redis_client=None, ttl: int = None):
        self.redis = redis_client
        self._redis_available = False
        self._local_store: Dict[str, str] = {}
        self.ttl = Config.SESSION_TTL_SECONDS if ttl is None else ttl

        if self.redis:
            try:
                self.redis.ping()
                self._redis_available = True
            except Exception as e:
                logger.warning(f"Redis unavailable for sessions: {e}. Using in-memory store.")
                self._redis_available = False

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def get_state(self, session_id: str) -> Optional[DialogState]:
        key = self._key(session_id)
        raw = None
        if self._redis_available:
            try:
                raw = self.redis.get(key)
            except Exception as e:
                logger.warning(f"Redis get_state failed: {e}")
                self._redis_available = False
                raw = self._local_store.get(key)
        else:
            raw = self._local_store.get(key)

        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return DialogState.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding corrupt state for session {session_id}: {e}")
            return None

    def save_state(self, session_id: str, state: DialogState) -> None:
        key = self._key(session_id)
        payload = json.dumps(state.to_dict(), ensure_ascii=False)
        if self._redis_available:
            try:
                self.redis.setex(key, self.ttl, payload)
                return
            except Exception as e:
                logger.warning(f"Redis save_state failed: {e}")
                self._redis_available = False
        self._local_store[key] = payload

    def delete_state(self, session_id: str) -> None:
        key = self._key(session_id)
        if self._redis_available:
            try:
                self.redis.delete(key)
            except Exception as e:
                logger.warning(f"Redis delete_state failed: {e}")
                self._redis_available = False
        self._local_store.pop(key, None)

    @property
    def redis_available(self) -> bool:
        return self._redis_available


class EscalationQueue:
    """
    Ticketing collaborator: nhận escalation recommendation và đẩy ticket vào hàng đợi
    cho caseworker. Redis list `escalations:queue` nếu có, fallback in-memory.
    """

    QUEUE_KEY = "escalations:queue"

    def __init__(self, redis_client=None, max_local: int = 1000):
        self.redis = redis_client
        self.max_local = max_local
        self._local_queue: List[Dict[str, Any]] = []

    def submit(
        self,
        session_id: str,
        reason: EscalationReason,
        state: Optional[DialogState] = None,
        name: Optional[str] = None,
        contact: Optional[str] = None,
        summary: Optional[str] = None,
    ) -> EscalationTicket:
        ticket = EscalationTicket(
            ticket_id=uuid.uuid4().hex,
            session_id=session_id,
            reason=reason,
            lang=state.lang if state else Config.DEFAULT_LANG,
            domain_id=state.domain_id.value if state and state.domain_id else None,
            last_query=state.last_query if state else "",
            name=name,
            contact=contact,
            summary=summary,
        )
        data = ticket.to_dict()

        if self.redis is not None:
            try:
                self.redis.rpush(self.QUEUE_KEY, json.dumps(data, ensure_ascii=False))
                logger.info(f"Escalation ticket {ticket.ticket_id} queued (reason={reason.value})")
                return ticket
            except Exception as e:
                logger.warning(f"Redis escalation push failed: {e}. Using in-memory queue.")

        self._local_queue.append(data)
        if len(self._local_queue) > self.max_local:
            self._local_queue = self._local_queue[-self.max_local:]
        logger.info(f"Escalation ticket {ticket.ticket_id} queued locally (reason={reason.value})")
        return ticket

    def pending(self) -> List[Dict[str, Any]]:
        if self.redis is not None:
            try:
                return [json.loads(x) for x in self.redis.lrange(self.QUEUE_KEY, 0, -1)]
            except Exception as e:
                logger.warning(f"Redis escalation read failed: {e}")
        return list(self._local_queue)
