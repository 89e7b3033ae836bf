import logging
import os
import time
from datetime import datetime
from typing import Optional, Callable, Union, Dict, Any
import json

from redis_manager import init_redis, RedisManager
from monitoring import init_monitoring
from schema import (
    Action,
    CardFocus,
    DialogState,
    EscalationReason,
    EscalationRecommendation,
    EscalationTicket,
    InteractionLog,
    TurnResult,
    Config,
    resolve_lang,
)
from knowledge_base import KnowledgeBase, load_knowledge_base, get_default_kb_path
from orchestrator import DialogOrchestrator
from decision_engine import SessionManager, EscalationQueue

logger = logging.getLogger(__name__)

EscalationHandler = Callable[[str, DialogState, EscalationRecommendation], None]


class ChatbotPipeline:
    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        redis_client=None,
        enable_monitoring: bool = True,
        escalation_handler: Optional[EscalationHandler] = None,
        profile: Optional[str] = None,
        redis_manager: Optional[RedisManager] = None,
    ):
        """
        Initialize all pipeline components.

        Args:
            knowledge_base: Knowledge base dùng chung (read-only) cho mọi session
            redis_client: Optional Redis cho session state + escalation queue
            enable_monitoring: Enable monitoring dashboard
            escalation_handler: Callback nhận (session_id, state, recommendation)
            profile: Retrieval profile ("default" | "strict")
            redis_manager: RedisManager cho metrics mirror
        """
        self.knowledge_base = knowledge_base
        self.orchestrator = DialogOrchestrator(knowledge_base, profile=profile)
        self.session_manager = SessionManager(redis_client)
        self.escalation_queue = EscalationQueue(redis_client if self.session_manager.redis_available else None)
        self.escalation_handler = escalation_handler

        self.monitoring = None
        if enable_monitoring:
            self.monitoring = init_monitoring(redis_manager=redis_manager, knowledge_base=knowledge_base)
            logger.info("Monitoring enabled")

    # ==================== Public API ====================

    def start_session(self, session_id: str, lang: Optional[str] = None) -> TurnResult:
        """Tạo (hoặc reset) session và trả về lời chào."""
        lang = resolve_lang(lang or Config.DEFAULT_LANG)
        state = self.orchestrator.init_state(lang)
        self.session_manager.save_state(session_id, state)
        logger.info(f"Session {session_id} started (lang={lang})")
        return TurnResult(state, self.orchestrator.welcome_message(lang))

    def process_text(self, session_id: str, text: Optional[str]) -> TurnResult:
        return self._run_turn(
            session_id,
            "text",
            text or "",
            lambda state: self.orchestrator.handle_text(state, text),
        )

    def process_action(self, session_id: str, action: Union[Action, Dict[str, Any], None]) -> TurnResult:
        if isinstance(action, dict):
            action = Action.from_dict(action)
        description = action.type.value if action is not None else "NOOP"
        return self._run_turn(
            session_id,
            "action",
            description,
            lambda state: self.orchestrator.handle_action(state, action),
        )

    def get_state(self, session_id: str) -> Optional[DialogState]:
        return self.session_manager.get_state(session_id)

    def create_ticket(
        self,
        session_id: str,
        name: Optional[str] = None,
        contact: Optional[str] = None,
        summary: Optional[str] = None,
        reason: EscalationReason = EscalationReason.USER_REQUESTED,
    ) -> Optional[EscalationTicket]:
        """Form "Escalate to human": tạo ticket cho session đang tồn tại."""
        state = self.session_manager.get_state(session_id)
        if state is None:
            logger.warning(f"Escalation requested for unknown session {session_id}")
            return None
        return self.escalation_queue.submit(
            session_id, reason, state=state, name=name, contact=contact, summary=summary
        )

    def clear_session(self, session_id: str) -> None:
        """Clear session data."""
        self.session_manager.delete_state(session_id)

    # ==================== Turn processing ====================

    def _load_state(self, session_id: str) -> DialogState:
        state = self.session_manager.get_state(session_id)
        if state is None:
            logger.info(f"No state for session {session_id}, initializing")
            state = self.orchestrator.init_state()
        return state

    def _run_turn(
        self,
        session_id: str,
        input_type: str,
        user_input: str,
        step: Callable[[DialogState], TurnResult],
    ) -> TurnResult:
        start_time = time.time()
        state = self._load_state(session_id)
        log_entry = self._init_log_entry(session_id, input_type, user_input, state)

        try:
            result = step(state)
            self.session_manager.save_state(session_id, result.state)

            message = result.message
            escalation = message.escalation if message is not None else None
            scheme_cards = [c for c in message.cards if c.focus != CardFocus.ENTRY] if message else []

            log_entry.step_after = result.state.step.value
            log_entry.domain_id = result.state.domain_id.value if result.state.domain_id else None
            log_entry.response_kind = message.kind.value if message is not None else "none"
            log_entry.result_count = len(scheme_cards)
            log_entry.low_confidence = (
                escalation is not None and escalation.reason == EscalationReason.LOW_CONFIDENCE
            )
            log_entry.escalation_reason = escalation.reason.value if escalation else None
            log_entry.total_latency_ms = int((time.time() - start_time) * 1000)
            self._save_log(log_entry)

            if self.monitoring:
                self.monitoring.record_turn(
                    session_id=session_id,
                    latency_ms=log_entry.total_latency_ms,
                    kind=message.kind if message is not None else None,
                    low_confidence=log_entry.low_confidence,
                    escalation_reason=escalation.reason if escalation else None,
                )

            if escalation is not None and escalation.recommended and self.escalation_handler:
                try:
                    self.escalation_handler(session_id, result.state, escalation)
                except Exception as e:
                    logger.error(f"Escalation handler failed: {e}", exc_info=True)

            return result

        except Exception as e:
            logger.error(f"Pipeline error: {e}", exc_info=True)
            log_entry.response_kind = "error"
            log_entry.total_latency_ms = int((time.time() - start_time) * 1000)
            self._save_log(log_entry)

            if self.monitoring:
                self.monitoring.record_error("pipeline", str(e))

            # Fallback: giữ nguyên state, trả lời xin lỗi kèm hotline
            return TurnResult(
                state,
                self.orchestrator.responder.error(state.lang, self.orchestrator.fallback_entries()),
            )

    def _init_log_entry(
        self,
        session_id: str,
        input_type: str,
        user_input: str,
        state: DialogState,
    ) -> InteractionLog:
        return InteractionLog(
            session_id=session_id,
            timestamp=datetime.now(),
            input_type=input_type,
            user_input=user_input,
            step_before=state.step.value,
            step_after=state.step.value,
            domain_id=state.domain_id.value if state.domain_id else None,
            response_kind="none",
            result_count=0,
            low_confidence=False,
            escalation_reason=None,
            total_latency_ms=0,
        )

    def _save_log(self, log_entry: InteractionLog) -> None:
        """Save interaction log."""
        log_dict = {
            "session_id": log_entry.session_id,
            "timestamp": log_entry.timestamp.isoformat(),
            "input_type": log_entry.input_type,
            "user_input": log_entry.user_input[:100] + "..." if len(log_entry.user_input) > 100 else log_entry.user_input,
            "step": f"{log_entry.step_before}->{log_entry.step_after}",
            "domain_id": log_entry.domain_id,
            "response_kind": log_entry.response_kind,
            "result_count": log_entry.result_count,
            "low_confidence": log_entry.low_confidence,
            "escalation_reason": log_entry.escalation_reason,
            "total_latency_ms": log_entry.total_latency_ms,
        }

        logger.info(f"Interaction log: {json.dumps(log_dict, ensure_ascii=False)}")


def create_pipeline(
    kb_path: Optional[str] = None,
    redis_url: Optional[str] = None,
    profile: Optional[str] = None,
    enable_monitoring: bool = True,
    escalation_handler: Optional[EscalationHandler] = None,
) -> ChatbotPipeline:
    knowledge_base = load_knowledge_base(kb_path or os.getenv("KB_PATH") or get_default_kb_path())

    redis_client = None
    redis_manager = None
    if redis_url:
        redis_manager = init_redis(redis_url)
        redis_client = redis_manager.client
        if redis_client is None:
            logger.warning("Redis unavailable, sessions and metrics stay in-memory")

    return ChatbotPipeline(
        knowledge_base=knowledge_base,
        redis_client=redis_client,
        enable_monitoring=enable_monitoring,
        escalation_handler=escalation_handler,
        profile=profile or os.getenv("RETRIEVAL_PROFILE") or Config.DEFAULT_PROFILE,
        redis_manager=redis_manager,
    )
