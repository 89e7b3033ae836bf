import logging
from typing import List, Optional

from schema import (
    Scheme,
    EntryPoint,
    DomainEnum,
    DialogStep,
    FocusEnum,
    CardFocus,
    ActionType,
    Action,
    ResultCard,
    QuickReply,
    AssistantMessage,
    EscalationRecommendation,
    ResponseKind,
    Config,
    DOMAIN_LABELS,
    FOCUS_LABELS,
    CLARIFICATION_QUESTIONS,
    QUICK_QUERIES,
    MESSAGE_TEMPLATES,
    QUICK_REPLY_LABELS,
    pick_lang,
)

logger = logging.getLogger(__name__)


def _tpl(key: str, lang: str, **kwargs) -> str:
    template = MESSAGE_TEMPLATES[key].get(lang) or MESSAGE_TEMPLATES[key]["en"]
    return template.format(**kwargs) if kwargs else template


def domain_label(domain: DomainEnum, lang: str) -> str:
    labels = DOMAIN_LABELS[domain]
    return labels.get(lang) or labels["en"]


class ResponseGenerator:
    """Message shaping không dùng LLM: template song ngữ + cards + quick replies."""

    def __init__(self, overview_max_items: int = None):
        self.overview_max_items = (
            Config.OVERVIEW_MAX_ITEMS if overview_max_items is None else overview_max_items
        )

    # ==================== Cards ====================

    def scheme_card(self, scheme: Scheme, focus: FocusEnum, lang: str) -> ResultCard:
        eligibility = pick_lang(scheme.eligibility_en, scheme.eligibility_zh, lang) or []
        steps = pick_lang(scheme.how_to_apply_en, scheme.how_to_apply_zh, lang) or []
        card = ResultCard(
            card_id=scheme.scheme_id,
            title=pick_lang(scheme.name_en, scheme.name_zh, lang),
            links=list(scheme.official_links),
        )

        if focus == FocusEnum.ELIGIBILITY:
            card.focus = CardFocus.ELIGIBILITY
            card.eligibility = list(eligibility)
        elif focus == FocusEnum.STEPS:
            card.focus = CardFocus.STEPS
            card.steps = list(steps)
        else:
            card.focus = CardFocus.OVERVIEW
            card.summary = pick_lang(scheme.summary_en, scheme.summary_zh, lang) or ""
            card.eligibility = list(eligibility[:self.overview_max_items])
            card.steps = list(steps[:self.overview_max_items])
        return card

    def entry_cards(self, entry_points: List[EntryPoint], lang: str) -> List[ResultCard]:
        return [
            ResultCard(
                card_id=e.entry_id,
                title=pick_lang(e.name_en, e.name_zh, lang),
                links=list(e.links),
                focus=CardFocus.ENTRY,
                contacts=e.contacts,
            )
            for e in entry_points
        ]

    # ==================== Quick replies ====================

    def _action_reply(self, reply_id: str, label_key: str, action: Action, lang: str) -> QuickReply:
        labels = QUICK_REPLY_LABELS[label_key]
        return QuickReply(reply_id=reply_id, label=labels.get(lang) or labels["en"], action=action)

    def _restart(self, lang: str) -> QuickReply:
        return self._action_reply("restart", "RESTART", Action(ActionType.RESTART), lang)

    def _back(self, lang: str) -> QuickReply:
        return self._action_reply("back_topics", "BACK_TOPICS", Action(ActionType.BACK_TOPICS), lang)

    def _end(self, lang: str) -> QuickReply:
        return self._action_reply("end", "END", Action(ActionType.END), lang)

    def _escalate(self, lang: str) -> QuickReply:
        return self._action_reply("escalate", "ESCALATE", Action(ActionType.ESCALATE), lang)

    def _urgent(self, lang: str) -> QuickReply:
        return self._action_reply("urgent", "URGENT", Action(ActionType.URGENT), lang)

    def _focus_reply(self, focus: FocusEnum, lang: str) -> QuickReply:
        return QuickReply(
            reply_id=f"focus:{focus.value}",
            label=FOCUS_LABELS[focus].get(lang) or FOCUS_LABELS[focus]["en"],
            action=Action(ActionType.SET_FOCUS, focus=focus.value),
        )

    def topic_menu(self, lang: str) -> List[QuickReply]:
        replies = [
            QuickReply(
                reply_id=f"domain:{d.value}",
                label=domain_label(d, lang),
                action=Action(ActionType.SET_DOMAIN, domain_id=d.value),
            )
            for d in DomainEnum
        ]
        replies.append(self._urgent(lang))
        return replies

    def focus_menu(self, lang: str) -> List[QuickReply]:
        replies = [self._focus_reply(f, lang) for f in FocusEnum]
        replies.extend([self._back(lang), self._restart(lang)])
        return replies

    def quick_query_menu(self, domain: DomainEnum, lang: str) -> List[QuickReply]:
        queries = QUICK_QUERIES.get(domain, {})
        texts = queries.get(lang) or queries.get("en") or []
        replies = [
            QuickReply(reply_id=f"query:{i}", label=text, send_text=text)
            for i, text in enumerate(texts)
        ]
        replies.extend([self._back(lang), self._restart(lang)])
        return replies

    def results_menu(self, lang: str, focus: FocusEnum, more_available: bool) -> List[QuickReply]:
        replies = [self._focus_reply(f, lang) for f in FocusEnum if f != focus]
        if more_available:
            replies.append(self._action_reply(
                "more_results", "MORE_RESULTS", Action(ActionType.MORE_RESULTS), lang
            ))
        replies.extend([self._back(lang), self._restart(lang), self._end(lang)])
        return replies

    # ==================== Messages ====================

    def welcome(self, lang: str) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("WELCOME", lang),
            kind=ResponseKind.WELCOME,
            quick_replies=self.topic_menu(lang),
        )

    def empty_input(self, lang: str, step: DialogStep, domain: Optional[DomainEnum]) -> AssistantMessage:
        if step == DialogStep.CHOOSE_DOMAIN or domain is None:
            replies = self.topic_menu(lang)
        elif step == DialogStep.CHOOSE_FOCUS:
            replies = self.quick_query_menu(domain, lang)
        else:
            replies = self.results_menu(lang, FocusEnum.OVERVIEW, more_available=False)
        return AssistantMessage(text=_tpl("EMPTY_INPUT", lang), kind=ResponseKind.EMPTY_INPUT, quick_replies=replies)

    def crisis(
        self,
        lang: str,
        kind: ResponseKind,
        entry_points: List[EntryPoint],
        escalation: EscalationRecommendation,
    ) -> AssistantMessage:
        key = "SENSITIVE" if kind == ResponseKind.SENSITIVE else "URGENT"
        return AssistantMessage(
            text=_tpl(key, lang),
            kind=kind,
            cards=self.entry_cards(entry_points, lang),
            quick_replies=[self._escalate(lang), self._back(lang), self._restart(lang)],
            escalation=escalation,
        )

    def domain_intro(self, lang: str, domain: DomainEnum) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("DOMAIN_INTRO", lang, label=domain_label(domain, lang)),
            kind=ResponseKind.DOMAIN_INTRO,
            quick_replies=self.focus_menu(lang),
        )

    def domain_unresolved(self, lang: str) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("DOMAIN_UNRESOLVED", lang),
            kind=ResponseKind.DOMAIN_UNRESOLVED,
            quick_replies=self.topic_menu(lang),
        )

    def topics(self, lang: str) -> AssistantMessage:
        return AssistantMessage(text=_tpl("TOPICS", lang), kind=ResponseKind.TOPICS, quick_replies=self.topic_menu(lang))

    def focus_question(self, lang: str, domain: DomainEnum) -> AssistantMessage:
        question = CLARIFICATION_QUESTIONS[domain]
        text = f"{question.get(lang) or question['en']}\n\n{_tpl('FOCUS_PROMPT', lang)}"
        return AssistantMessage(
            text=text,
            kind=ResponseKind.FOCUS_QUESTION,
            quick_replies=self.quick_query_menu(domain, lang),
        )

    def refine_prompt(self, lang: str) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("REFINE_PROMPT", lang),
            kind=ResponseKind.FOCUS_QUESTION,
            quick_replies=[self._back(lang), self._restart(lang)],
        )

    def results(
        self,
        lang: str,
        domain: Optional[DomainEnum],
        focus: FocusEnum,
        schemes: List[Scheme],
        more_available: bool,
        low_confidence: bool,
        fallback_entry_points: List[EntryPoint],
        escalation: Optional[EscalationRecommendation] = None,
    ) -> AssistantMessage:
        if domain is not None:
            intro = _tpl("RESULTS", lang, label=domain_label(domain, lang))
        else:
            intro = _tpl("RESULTS_NO_DOMAIN", lang)
        cards = [self.scheme_card(s, focus, lang) for s in schemes]

        if low_confidence:
            intro = _tpl("RESULTS_LOW_CONFIDENCE", lang)
            cards.extend(self.entry_cards(fallback_entry_points, lang))

        return AssistantMessage(
            text=intro,
            kind=ResponseKind.RESULTS,
            cards=cards,
            quick_replies=self.results_menu(lang, focus, more_available),
            escalation=escalation,
        )

    def no_results(
        self,
        lang: str,
        entry_points: List[EntryPoint],
        escalation: Optional[EscalationRecommendation] = None,
    ) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("NO_RESULTS", lang),
            kind=ResponseKind.NO_RESULTS,
            cards=self.entry_cards(entry_points, lang),
            quick_replies=[self._escalate(lang), self._back(lang), self._restart(lang), self._end(lang)],
            escalation=escalation,
        )

    def no_more_results(self, lang: str, escalation: Optional[EscalationRecommendation] = None) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("NO_MORE_RESULTS", lang),
            kind=ResponseKind.NO_MORE_RESULTS,
            quick_replies=[self._escalate(lang), self._back(lang), self._restart(lang), self._end(lang)],
            escalation=escalation,
        )

    def escalation(
        self,
        lang: str,
        entry_points: List[EntryPoint],
        escalation: EscalationRecommendation,
    ) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("ESCALATION", lang),
            kind=ResponseKind.ESCALATION,
            cards=self.entry_cards(entry_points, lang),
            quick_replies=[self._back(lang), self._restart(lang), self._end(lang)],
            escalation=escalation,
        )

    def closing(self, lang: str) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("CLOSING", lang),
            kind=ResponseKind.CLOSING,
            quick_replies=[self._restart(lang)],
        )

    def error(self, lang: str, entry_points: List[EntryPoint]) -> AssistantMessage:
        return AssistantMessage(
            text=_tpl("ERROR", lang),
            kind=ResponseKind.ERROR,
            cards=self.entry_cards(entry_points, lang),
            quick_replies=[self._restart(lang)],
        )
