"""
Dialog Orchestrator
===================

Finite-state machine điều phối một lượt hội thoại:

    choose_domain ──► choose_focus ──► refine_and_show
          ▲                                   │
          └──────── BACK_TOPICS / crisis ─────┘

`ended` là cờ độc lập với `step`. Mỗi transition là hàm thuần
(state, input) -> (new_state, message); state không bao giờ bị mutate.

Precedence mỗi lượt: sensitive > urgent > explicit action > domain detection > retrieval.
"""

import logging
from typing import Callable, Dict, List, Optional, Union, Any

from schema import (
    Action,
    ActionType,
    AssistantMessage,
    DialogState,
    DialogStep,
    DomainEnum,
    EntryPoint,
    FocusEnum,
    ResponseKind,
    RetrievalResult,
    SafetyResult,
    TurnResult,
    Config,
    resolve_lang,
)
from knowledge_base import KnowledgeBase
from intent_parser import SafetyClassifier, DomainClassifier
from retrieval import SchemeRetriever, paginate, has_more
from response_generator import ResponseGenerator
from decision_engine import EscalationAdvisor

logger = logging.getLogger(__name__)


def _parse_domain(value: Any) -> Optional[DomainEnum]:
    if value is None:
        return None
    try:
        return DomainEnum(str(getattr(value, "value", value)).lower())
    except ValueError:
        return None


def _parse_focus(value: Any) -> FocusEnum:
    try:
        return FocusEnum(str(getattr(value, "value", value)).lower())
    except ValueError:
        return FocusEnum.OVERVIEW


class DialogOrchestrator:

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        retriever: Optional[SchemeRetriever] = None,
        safety_classifier: Optional[SafetyClassifier] = None,
        domain_classifier: Optional[DomainClassifier] = None,
        response_generator: Optional[ResponseGenerator] = None,
        escalation_advisor: Optional[EscalationAdvisor] = None,
        page_size: int = None,
        profile: str = None,
    ):
        self.kb = knowledge_base
        self.retriever = retriever or SchemeRetriever(knowledge_base.schemes, profile=profile)
        self.safety = safety_classifier or SafetyClassifier()
        self.domains = domain_classifier or DomainClassifier()
        self.responder = response_generator or ResponseGenerator()
        self.advisor = escalation_advisor or EscalationAdvisor()
        self.page_size = page_size or Config.PAGE_SIZE

        self._action_handlers: Dict[ActionType, Callable[[DialogState, Action], TurnResult]] = {
            ActionType.RESTART: self._on_restart,
            ActionType.BACK_TOPICS: self._on_back_topics,
            ActionType.URGENT: self._on_urgent,
            ActionType.SENSITIVE: self._on_sensitive,
            ActionType.SET_DOMAIN: self._on_set_domain,
            ActionType.SET_FOCUS: self._on_set_focus,
            ActionType.ADD_QUERY: self._on_add_query,
            ActionType.MORE_RESULTS: self._on_more_results,
            ActionType.END: self._on_end,
            ActionType.ESCALATE: self._on_escalate,
            ActionType.NOOP: self._on_noop,
        }
        missing = set(ActionType) - set(self._action_handlers)
        if missing:
            raise RuntimeError(f"Unhandled action types: {sorted(m.value for m in missing)}")

    # ==================== Entry points ====================

    def init_state(self, lang: str = None) -> DialogState:
        return DialogState(lang=resolve_lang(lang or Config.DEFAULT_LANG), page_size=self.page_size)

    def welcome_message(self, lang: str = None) -> AssistantMessage:
        return self.responder.welcome(resolve_lang(lang or Config.DEFAULT_LANG))

    def handle_text(self, state: DialogState, text: Optional[str]) -> TurnResult:
        text = (text or "").strip()

        safety = self.safety.classify(text)
        if safety.sensitive:
            return self._crisis(state, ResponseKind.SENSITIVE, safety)
        if safety.urgent:
            return self._crisis(state, ResponseKind.URGENT, safety)

        if state.ended:
            logger.info("Session ended, reinitializing on new text")
            return self._restart(state.lang)

        if not text:
            return TurnResult(state, self.responder.empty_input(state.lang, state.step, state.domain_id))

        if state.step == DialogStep.CHOOSE_DOMAIN:
            return self._detect_domain(state, text)

        # choose_focus: query đầu tiên; refine_and_show: text mới THAY THẾ query cũ
        new_state = state.evolve(step=DialogStep.REFINE_AND_SHOW, last_query=text, offset=0)
        return self._render(new_state)

    def handle_action(self, state: DialogState, action: Union[Action, Dict[str, Any], None]) -> TurnResult:
        if action is None:
            action = Action(ActionType.NOOP)
        elif isinstance(action, dict):
            action = Action.from_dict(action)

        handler = self._action_handlers.get(action.type, self._on_noop)
        logger.info(f"Action: {action.type.value} (step={state.step.value})")
        return handler(state, action)

    # ==================== Free-text transitions ====================

    def _detect_domain(self, state: DialogState, text: str) -> TurnResult:
        match = self.domains.classify(text)
        if not match.resolved:
            return TurnResult(state, self.responder.domain_unresolved(state.lang))

        new_state = state.evolve(
            step=DialogStep.CHOOSE_FOCUS,
            domain_id=match.domain,
            focus=FocusEnum.OVERVIEW,
            last_query="",
            offset=0,
        )
        logger.info(f"Transition: choose_domain -> choose_focus (domain={match.domain.value}, method={match.method})")
        return TurnResult(new_state, self.responder.domain_intro(state.lang, match.domain))

    def _crisis(self, state: DialogState, kind: ResponseKind, safety: SafetyResult) -> TurnResult:
        new_state = state.evolve(
            step=DialogStep.CHOOSE_DOMAIN,
            domain_id=None,
            focus=FocusEnum.OVERVIEW,
            last_query="",
            offset=0,
            ended=False,
        )
        prefer = "crisis" if kind == ResponseKind.SENSITIVE else "urgent"
        escalation = self.advisor.recommend(safety=safety)
        logger.info(f"Transition: {state.step.value} -> choose_domain ({kind.value})")
        return TurnResult(
            new_state,
            self.responder.crisis(state.lang, kind, self.kb.entry_points_for(prefer), escalation),
        )

    def _restart(self, lang: str) -> TurnResult:
        return TurnResult(self.init_state(lang), self.welcome_message(lang))

    # ==================== Rendering ====================

    def fallback_entries(self) -> List[EntryPoint]:
        general = [e for e in self.kb.entry_points if "general" in e.tags]
        return general or list(self.kb.entry_points)

    def _render(self, state: DialogState, result: Optional[RetrievalResult] = None) -> TurnResult:
        if result is None:
            result = self.retriever.retrieve_all(state.last_query, state.domain_id)
        lang = state.lang

        if result.total == 0:
            escalation = self.advisor.recommend(retrieval=result)
            return TurnResult(state, self.responder.no_results(lang, self.fallback_entries(), escalation))

        page = paginate(result.items, state.offset, state.page_size)
        if not page:
            return TurnResult(state, self.responder.no_more_results(lang))

        escalation = self.advisor.recommend(retrieval=result) if result.low_confidence else None
        message = self.responder.results(
            lang=lang,
            domain=state.domain_id,
            focus=state.focus,
            schemes=[x.scheme for x in page],
            more_available=has_more(result.total, state.offset, state.page_size),
            low_confidence=result.low_confidence,
            fallback_entry_points=self.fallback_entries(),
            escalation=escalation,
        )
        return TurnResult(state, message)

    def _prompt_for_step(self, state: DialogState) -> AssistantMessage:
        if state.domain_id is None:
            return self.responder.topics(state.lang)
        if state.step == DialogStep.REFINE_AND_SHOW:
            return self.responder.refine_prompt(state.lang)
        return self.responder.focus_question(state.lang, state.domain_id)

    # ==================== Action handlers ====================

    def _on_restart(self, state: DialogState, action: Action) -> TurnResult:
        lang = resolve_lang(action.lang) if action.lang else state.lang
        return self._restart(lang)

    def _on_back_topics(self, state: DialogState, action: Action) -> TurnResult:
        new_state = state.evolve(
            step=DialogStep.CHOOSE_DOMAIN,
            domain_id=None,
            focus=FocusEnum.OVERVIEW,
            last_query="",
            offset=0,
            ended=False,
        )
        return TurnResult(new_state, self.responder.topics(state.lang))

    def _on_urgent(self, state: DialogState, action: Action) -> TurnResult:
        return self._crisis(state, ResponseKind.URGENT, SafetyResult(urgent=True))

    def _on_sensitive(self, state: DialogState, action: Action) -> TurnResult:
        return self._crisis(state, ResponseKind.SENSITIVE, SafetyResult(sensitive=True))

    def _on_set_domain(self, state: DialogState, action: Action) -> TurnResult:
        domain = _parse_domain(action.domain_id)
        if domain is None:
            logger.info(f"SET_DOMAIN with unknown domain '{action.domain_id}'")
            return TurnResult(state, self.responder.domain_unresolved(state.lang))

        new_state = state.evolve(
            step=DialogStep.CHOOSE_FOCUS,
            domain_id=domain,
            focus=FocusEnum.OVERVIEW,
            last_query="",
            offset=0,
            ended=False,
        )
        return TurnResult(new_state, self.responder.domain_intro(state.lang, domain))

    def _on_set_focus(self, state: DialogState, action: Action) -> TurnResult:
        if state.domain_id is None:
            return TurnResult(
                state.evolve(step=DialogStep.CHOOSE_DOMAIN, ended=False),
                self.responder.topics(state.lang),
            )

        focus = _parse_focus(action.focus)
        new_state = state.evolve(focus=focus, offset=0, ended=False)

        if state.last_query:
            # Đổi focus luôn hiển thị lại trang đầu
            return self._render(new_state.evolve(step=DialogStep.REFINE_AND_SHOW))

        new_state = new_state.evolve(step=DialogStep.CHOOSE_FOCUS)
        return TurnResult(new_state, self.responder.focus_question(state.lang, state.domain_id))

    def _on_add_query(self, state: DialogState, action: Action) -> TurnResult:
        text = (action.text or "").strip()
        if not text:
            return TurnResult(state, self._prompt_for_step(state))

        safety = self.safety.classify(text)
        if safety.sensitive:
            return self._crisis(state, ResponseKind.SENSITIVE, safety)
        if safety.urgent:
            return self._crisis(state, ResponseKind.URGENT, safety)

        combined = f"{state.last_query} {text}".strip()
        new_state = state.evolve(
            step=DialogStep.REFINE_AND_SHOW,
            last_query=combined,
            offset=0,
            ended=False,
        )
        return self._render(new_state)

    def _on_more_results(self, state: DialogState, action: Action) -> TurnResult:
        if state.step != DialogStep.REFINE_AND_SHOW or not state.last_query:
            return TurnResult(state, self._prompt_for_step(state))

        result = self.retriever.retrieve_all(state.last_query, state.domain_id)
        if result.total == 0:
            return self._render(state, result)

        new_offset = state.offset + state.page_size
        if new_offset >= result.total:
            logger.info(f"No more results (offset={state.offset}, total={result.total})")
            return TurnResult(state, self.responder.no_more_results(state.lang))

        return self._render(state.evolve(offset=new_offset, ended=False), result)

    def _on_end(self, state: DialogState, action: Action) -> TurnResult:
        return TurnResult(state.evolve(ended=True), self.responder.closing(state.lang))

    def _on_escalate(self, state: DialogState, action: Action) -> TurnResult:
        escalation = self.advisor.recommend(user_requested=True)
        return TurnResult(
            state,
            self.responder.escalation(state.lang, self.fallback_entries(), escalation),
        )

    def _on_noop(self, state: DialogState, action: Action) -> TurnResult:
        return TurnResult(state, None)
