"""
Test DialogOrchestrator (state machine)
=======================================

Verify rằng:
1. Mỗi transition là hàm thuần (state, input) -> (new_state, message)
2. Crisis paths luôn reset về choose_domain và kèm entry-point cards
3. Pagination qua MORE_RESULTS không lặp và dừng bằng "no more results"
4. RESTART luôn trả về (init_state, welcome)
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from schema import (
    Action,
    ActionType,
    CardFocus,
    Contacts,
    DialogState,
    DialogStep,
    DomainEnum,
    EntryPoint,
    EscalationReason,
    FocusEnum,
    ResponseKind,
    Scheme,
    TurnResult,
)
from knowledge_base import KnowledgeBase, load_knowledge_base, get_default_kb_path
from orchestrator import DialogOrchestrator


def make_kb() -> KnowledgeBase:
    entry_points = (
        EntryPoint(
            entry_id="crisis_line",
            name_en="Crisis Line",
            name_zh="危机热线",
            contacts=Contacts(hotline="1767"),
            tags=["crisis"],
        ),
        EntryPoint(
            entry_id="urgent_line",
            name_en="Urgent Line",
            name_zh="紧急热线",
            contacts=Contacts(hotline="1800-000-0000"),
            tags=["urgent", "general"],
        ),
        EntryPoint(
            entry_id="info_portal",
            name_en="Info Portal",
            links=["https://example.org/"],
            tags=["general"],
        ),
    )
    schemes = tuple(
        Scheme(
            scheme_id=f"grant_{i}",
            category="financial_assistance",
            name_en=f"Grant Scheme {i}",
            name_zh=f"补助计划 {i}",
            summary_en=f"Summary {i}",
            summary_zh=f"简介 {i}",
            eligibility_en=[f"rule {n}" for n in range(6)],
            eligibility_zh=[f"条件 {n}" for n in range(6)],
            how_to_apply_en=[f"step {n}" for n in range(6)],
            how_to_apply_zh=[f"步骤 {n}" for n in range(6)],
            keywords_en=["grant", "voucher"],
            official_links=[f"https://example.org/grant/{i}"],
        )
        for i in range(7)
    )
    return KnowledgeBase(schemes=schemes, entry_points=entry_points)


def refine_state(query: str = "grant", domain: DomainEnum = DomainEnum.FINANCIAL, offset: int = 0) -> DialogState:
    return DialogState(
        step=DialogStep.REFINE_AND_SHOW,
        domain_id=domain,
        focus=FocusEnum.OVERVIEW,
        last_query=query,
        offset=offset,
    )


def card_ids(result: TurnResult):
    return [c.card_id for c in result.message.cards]


# ==================== Init / restart ====================

def test_init_state():
    orch = DialogOrchestrator(make_kb())
    state = orch.init_state("en")
    assert state.step == DialogStep.CHOOSE_DOMAIN
    assert state.domain_id is None
    assert state.focus == FocusEnum.OVERVIEW
    assert state.last_query == ""
    assert state.offset == 0
    assert state.page_size == 3
    assert not state.ended

    assert orch.init_state("zh-SG").lang == "zh"
    assert orch.init_state("fr").lang == "en"


def test_welcome_message():
    orch = DialogOrchestrator(make_kb())
    message = orch.welcome_message("en")
    assert message.kind == ResponseKind.WELCOME
    types = [q.action.type for q in message.quick_replies]
    assert types.count(ActionType.SET_DOMAIN) == len(DomainEnum)
    assert ActionType.URGENT in types


def test_restart_round_trip():
    print("=" * 60)
    print("TEST: RESTART round-trip")
    print("=" * 60)

    orch = DialogOrchestrator(make_kb())
    states = [
        orch.init_state("en"),
        refine_state(offset=3),
        refine_state().evolve(ended=True),
        DialogState(lang="zh", step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.LEGAL),
    ]
    for state in states:
        result = orch.handle_action(state, Action(ActionType.RESTART))
        expected = TurnResult(orch.init_state(state.lang), orch.welcome_message(state.lang))
        assert result == expected, state

    switched = orch.handle_action(refine_state(), Action(ActionType.RESTART, lang="zh"))
    assert switched.state == orch.init_state("zh")
    assert switched.message == orch.welcome_message("zh")


# ==================== Crisis paths ====================

def test_urgent_scenario():
    print("=" * 60)
    print("TEST: 'no place to stay tonight' → urgent")
    print("=" * 60)

    kb = load_knowledge_base(get_default_kb_path())
    orch = DialogOrchestrator(kb)
    result = orch.handle_text(refine_state(offset=3), "no place to stay tonight")

    assert result.state.step == DialogStep.CHOOSE_DOMAIN
    assert result.state.domain_id is None
    assert result.state.last_query == ""
    assert result.state.offset == 0
    assert result.message.kind == ResponseKind.URGENT
    assert result.message.cards
    assert all(c.focus == CardFocus.ENTRY for c in result.message.cards)
    assert result.message.cards[0].card_id == "comcare_hotline"
    assert result.message.escalation.reason == EscalationReason.URGENT


def test_sensitive_precedence():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_text(orch.init_state("en"), "I'm homeless and want to end my life")
    assert result.message.kind == ResponseKind.SENSITIVE
    assert result.message.cards[0].card_id == "crisis_line"
    assert result.message.cards[0].contacts.hotline == "1767"
    assert result.message.escalation.recommended
    assert result.message.escalation.reason == EscalationReason.SENSITIVE


def test_crisis_actions():
    orch = DialogOrchestrator(make_kb())
    urgent = orch.handle_action(refine_state(), Action(ActionType.URGENT))
    assert urgent.message.kind == ResponseKind.URGENT
    assert urgent.state.step == DialogStep.CHOOSE_DOMAIN
    assert urgent.message.cards[0].card_id == "urgent_line"

    sensitive = orch.handle_action(refine_state(), {"type": "SENSITIVE"})
    assert sensitive.message.kind == ResponseKind.SENSITIVE
    assert sensitive.message.cards[0].card_id == "crisis_line"


# ==================== choose_domain ====================

def test_hospital_bill_scenario():
    kb = load_knowledge_base(get_default_kb_path())
    orch = DialogOrchestrator(kb)
    result = orch.handle_text(orch.init_state("en"), "I can't afford my hospital bill")

    assert result.state.step == DialogStep.CHOOSE_FOCUS
    assert result.state.domain_id == DomainEnum.HEALTHCARE
    assert result.message.kind == ResponseKind.DOMAIN_INTRO
    assert "Healthcare" in result.message.text
    focus_actions = [q.action for q in result.message.quick_replies if q.action and q.action.type == ActionType.SET_FOCUS]
    assert {a.focus for a in focus_actions} == {"overview", "eligibility", "steps"}


def test_domain_unresolved():
    orch = DialogOrchestrator(make_kb())
    state = orch.init_state("en")
    result = orch.handle_text(state, "hello there")
    assert result.state == state
    assert result.message.kind == ResponseKind.DOMAIN_UNRESOLVED
    assert result.message.quick_replies


def test_empty_input():
    orch = DialogOrchestrator(make_kb())
    for state in [orch.init_state("en"), refine_state(), DialogState(step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.HOUSING)]:
        result = orch.handle_text(state, "   ")
        assert result.state == state
        assert result.message.kind == ResponseKind.EMPTY_INPUT
        assert result.message.quick_replies

    assert orch.handle_text(orch.init_state(), None).message.kind == ResponseKind.EMPTY_INPUT


# ==================== Retrieval transitions ====================

def test_first_query_from_choose_focus():
    orch = DialogOrchestrator(make_kb())
    state = DialogState(step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.FINANCIAL)
    result = orch.handle_text(state, "grant")

    assert result.state.step == DialogStep.REFINE_AND_SHOW
    assert result.state.last_query == "grant"
    assert result.state.offset == 0
    assert result.message.kind == ResponseKind.RESULTS
    assert card_ids(result) == ["grant_0", "grant_1", "grant_2"]
    assert "Financial Assistance" in result.message.text
    assert result.message.escalation is None


def test_refine_text_replaces_query():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_text(refine_state(query="grant", offset=3), "voucher")
    assert result.state.last_query == "voucher"
    assert result.state.offset == 0


def test_add_query_appends():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_action(refine_state(query="grant", offset=3), Action(ActionType.ADD_QUERY, text="voucher"))
    assert result.state.last_query == "grant voucher"
    assert result.state.offset == 0
    assert result.state.step == DialogStep.REFINE_AND_SHOW

    unchanged = orch.handle_action(refine_state(), Action(ActionType.ADD_QUERY, text="  "))
    assert unchanged.state == refine_state()

    crisis = orch.handle_action(refine_state(), Action(ActionType.ADD_QUERY, text="I'm homeless"))
    assert crisis.message.kind == ResponseKind.URGENT
    assert crisis.state.step == DialogStep.CHOOSE_DOMAIN


def test_set_focus_eligibility_resets_offset():
    print("=" * 60)
    print("TEST: SET_FOCUS(eligibility) re-renders page one")
    print("=" * 60)

    orch = DialogOrchestrator(make_kb())
    result = orch.handle_action(refine_state(offset=3), Action(ActionType.SET_FOCUS, focus="eligibility"))

    assert result.state.offset == 0
    assert result.state.focus == FocusEnum.ELIGIBILITY
    assert result.state.step == DialogStep.REFINE_AND_SHOW
    assert card_ids(result) == ["grant_0", "grant_1", "grant_2"]
    for card in result.message.cards:
        assert card.focus == CardFocus.ELIGIBILITY
        assert len(card.eligibility) == 6
        assert card.steps == []
        assert card.summary == ""


def test_overview_cards_abbreviated():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_text(refine_state(), "grant")
    card = result.message.cards[0]
    assert card.focus == CardFocus.OVERVIEW
    assert card.summary == "Summary 0"
    assert len(card.eligibility) == 4
    assert len(card.steps) == 4
    assert card.links == ["https://example.org/grant/0"]


def test_set_focus_without_query():
    orch = DialogOrchestrator(make_kb())
    state = DialogState(step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.FINANCIAL)
    result = orch.handle_action(state, Action(ActionType.SET_FOCUS, focus="steps"))
    assert result.state.step == DialogStep.CHOOSE_FOCUS
    assert result.state.focus == FocusEnum.STEPS
    assert result.message.kind == ResponseKind.FOCUS_QUESTION
    assert any(q.send_text for q in result.message.quick_replies)

    # focus không hợp lệ → overview
    fallback = orch.handle_action(state, Action(ActionType.SET_FOCUS, focus="bogus"))
    assert fallback.state.focus == FocusEnum.OVERVIEW

    # chưa có domain → quay lại topic menu
    no_domain = orch.handle_action(orch.init_state(), Action(ActionType.SET_FOCUS, focus="steps"))
    assert no_domain.message.kind == ResponseKind.TOPICS
    assert no_domain.state.step == DialogStep.CHOOSE_DOMAIN


def test_more_results_no_duplicates():
    print("=" * 60)
    print("TEST: MORE_RESULTS pagination")
    print("=" * 60)

    orch = DialogOrchestrator(make_kb())
    result = orch.handle_text(DialogState(step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.FINANCIAL), "grant")
    seen = card_ids(result)
    has_more_reply = [any(q.reply_id == "more_results" for q in result.message.quick_replies)]

    state = result.state
    while True:
        result = orch.handle_action(state, Action(ActionType.MORE_RESULTS))
        if result.message.kind != ResponseKind.RESULTS:
            break
        assert result.state.offset % result.state.page_size == 0
        seen.extend(card_ids(result))
        has_more_reply.append(any(q.reply_id == "more_results" for q in result.message.quick_replies))
        state = result.state

    print(f"  pages → {seen}")
    assert seen == [f"grant_{i}" for i in range(7)]
    assert len(seen) == len(set(seen))
    assert has_more_reply == [True, True, False]

    assert result.message.kind == ResponseKind.NO_MORE_RESULTS
    assert result.state == state
    assert result.state.offset == 6
    assert any(q.action and q.action.type == ActionType.ESCALATE for q in result.message.quick_replies)


def test_more_results_without_query():
    orch = DialogOrchestrator(make_kb())
    state = DialogState(step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.FINANCIAL)
    result = orch.handle_action(state, Action(ActionType.MORE_RESULTS))
    assert result.state == state
    assert result.message.kind == ResponseKind.FOCUS_QUESTION


def test_no_results_fallback():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_text(refine_state(domain=DomainEnum.LEGAL), "zzzz")
    assert result.message.kind == ResponseKind.NO_RESULTS
    assert card_ids(result) == ["urgent_line", "info_portal"]
    assert all(c.focus == CardFocus.ENTRY for c in result.message.cards)
    assert result.message.escalation.reason == EscalationReason.LOW_CONFIDENCE


def test_low_confidence_results():
    orch = DialogOrchestrator(make_kb())
    # "voucher" chỉ có trong keywords (3 điểm), domain legal không boost → dưới threshold
    result = orch.handle_text(refine_state(domain=DomainEnum.LEGAL), "voucher")
    assert result.message.kind == ResponseKind.RESULTS
    assert result.message.text.startswith("I'm not fully sure")
    assert card_ids(result) == ["grant_0", "grant_1", "grant_2", "urgent_line", "info_portal"]
    assert result.message.escalation.reason == EscalationReason.LOW_CONFIDENCE


def test_empty_knowledge_base():
    orch = DialogOrchestrator(KnowledgeBase())
    result = orch.handle_text(refine_state(), "grant")
    assert result.message.kind == ResponseKind.NO_RESULTS
    assert result.message.cards == []
    assert result.message.quick_replies


# ==================== Discrete actions ====================

def test_back_topics():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_action(refine_state(offset=3), Action(ActionType.BACK_TOPICS))
    assert result.state.step == DialogStep.CHOOSE_DOMAIN
    assert result.state.domain_id is None
    assert result.state.last_query == ""
    assert result.state.offset == 0
    assert result.message.kind == ResponseKind.TOPICS


def test_set_domain():
    orch = DialogOrchestrator(make_kb())
    result = orch.handle_action(orch.init_state(), Action(ActionType.SET_DOMAIN, domain_id="housing"))
    assert result.state.step == DialogStep.CHOOSE_FOCUS
    assert result.state.domain_id == DomainEnum.HOUSING
    assert result.message.kind == ResponseKind.DOMAIN_INTRO

    state = orch.init_state()
    bogus = orch.handle_action(state, Action(ActionType.SET_DOMAIN, domain_id="bogus"))
    assert bogus.state == state
    assert bogus.message.kind == ResponseKind.DOMAIN_UNRESOLVED


def test_end_and_revival():
    orch = DialogOrchestrator(make_kb())
    ended = orch.handle_action(refine_state(), Action(ActionType.END))
    assert ended.state.ended
    assert ended.state.last_query == "grant"
    assert ended.message.kind == ResponseKind.CLOSING

    revived = orch.handle_text(ended.state, "grant")
    assert revived.state == orch.init_state("en")
    assert revived.message.kind == ResponseKind.WELCOME

    crisis = orch.handle_text(ended.state, "no place to stay tonight")
    assert crisis.message.kind == ResponseKind.URGENT
    assert not crisis.state.ended


def test_escalate_emits_intent_only():
    orch = DialogOrchestrator(make_kb())
    state = refine_state(offset=3)
    result = orch.handle_action(state, Action(ActionType.ESCALATE))
    assert result.state == state
    assert result.message.kind == ResponseKind.ESCALATION
    assert result.message.escalation.recommended
    assert result.message.escalation.reason == EscalationReason.USER_REQUESTED


def test_noop_and_unknown_actions():
    orch = DialogOrchestrator(make_kb())
    state = refine_state(offset=3)
    for action in [Action(ActionType.NOOP), {"type": "DANCE"}, {}, None]:
        result = orch.handle_action(state, action)
        assert result.state == state
        assert result.message is None


def test_pure_transitions():
    """Input state không bị thay đổi; cùng input → cùng output"""
    orch = DialogOrchestrator(make_kb())
    state = DialogState(step=DialogStep.CHOOSE_FOCUS, domain_id=DomainEnum.FINANCIAL)
    snapshot = state.to_dict()
    first = orch.handle_text(state, "grant")
    second = orch.handle_text(state, "grant")
    assert state.to_dict() == snapshot
    assert first == second


def test_chinese_messages():
    orch = DialogOrchestrator(make_kb())
    state = orch.init_state("zh")
    result = orch.handle_action(state, Action(ActionType.SET_DOMAIN, domain_id="financial"))
    assert "经济援助" in result.message.text

    result = orch.handle_text(result.state, "补助")
    assert result.message.kind == ResponseKind.RESULTS
    assert result.message.cards[0].title == "补助计划 0"
    assert result.message.cards[0].summary == "简介 0"


def main():
    """Run all tests"""
    tests = [
        ("init_state", test_init_state),
        ("Welcome message", test_welcome_message),
        ("RESTART round-trip", test_restart_round_trip),
        ("Urgent scenario", test_urgent_scenario),
        ("Sensitive precedence", test_sensitive_precedence),
        ("Crisis actions", test_crisis_actions),
        ("Hospital bill scenario", test_hospital_bill_scenario),
        ("Domain unresolved", test_domain_unresolved),
        ("Empty input", test_empty_input),
        ("First query", test_first_query_from_choose_focus),
        ("Refine replaces query", test_refine_text_replaces_query),
        ("ADD_QUERY appends", test_add_query_appends),
        ("SET_FOCUS eligibility", test_set_focus_eligibility_resets_offset),
        ("Overview abbreviated", test_overview_cards_abbreviated),
        ("SET_FOCUS without query", test_set_focus_without_query),
        ("MORE_RESULTS pagination", test_more_results_no_duplicates),
        ("MORE_RESULTS without query", test_more_results_without_query),
        ("No results fallback", test_no_results_fallback),
        ("Low confidence", test_low_confidence_results),
        ("Empty knowledge base", test_empty_knowledge_base),
        ("BACK_TOPICS", test_back_topics),
        ("SET_DOMAIN", test_set_domain),
        ("END + revival", test_end_and_revival),
        ("ESCALATE", test_escalate_emits_intent_only),
        ("NOOP / unknown", test_noop_and_unknown_actions),
        ("Pure transitions", test_pure_transitions),
        ("Chinese messages", test_chinese_messages),
    ]

    results = []
    for name, fn in tests:
        try:
            fn()
            results.append((name, True))
        except AssertionError as e:
            print(f"  ❌ {name}: {e}")
            results.append((name, False))

    passed = sum(1 for _, r in results if r)
    for name, result in results:
        status = "✅ PASSED" if result else "❌ FAILED"
        print(f"  {status}: {name}")
    print(f"\n  Total: {passed}/{len(results)} tests passed")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    exit(main())
