import os
import logging
from typing import List, Optional

from chainlit.cli import run_chainlit
import chainlit as cl
from dotenv import load_dotenv

from pipeline import create_pipeline, ChatbotPipeline
from schema import (
    Action,
    ActionType,
    AssistantMessage,
    CardFocus,
    ResponseKind,
    ResultCard,
    TurnResult,
    Config,
    resolve_lang,
)
from i18n import t

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

pipeline: ChatbotPipeline = None


def get_pipeline() -> ChatbotPipeline:
    global pipeline

    if pipeline is None:
        logger.info("Khởi tạo pipeline...")
        pipeline = create_pipeline(
            kb_path=os.getenv("KB_PATH"),
            redis_url=os.getenv("REDIS_URL"),
            profile=os.getenv("RETRIEVAL_PROFILE"),
            enable_monitoring=os.getenv("ENABLE_MONITORING", "true").lower() == "true",
        )
        logger.info("Pipeline đã sẵn sàng")

    return pipeline


# ==================== Rendering ====================

def render_card(card: ResultCard, lang: str) -> str:
    """Render một card thành markdown theo focus."""
    lines = [f"### {card.title}"]

    if card.focus == CardFocus.OVERVIEW and card.summary:
        lines.append(card.summary)

    if card.focus in (CardFocus.OVERVIEW, CardFocus.ELIGIBILITY) and card.eligibility:
        lines.append(f"**{t(lang, 'eligibility')}**")
        lines.extend(f"- {item}" for item in card.eligibility)

    if card.focus in (CardFocus.OVERVIEW, CardFocus.STEPS) and card.steps:
        lines.append(f"**{t(lang, 'steps')}**")
        lines.extend(f"{i}. {item}" for i, item in enumerate(card.steps, 1))

    if card.focus == CardFocus.ENTRY and card.contacts:
        if card.contacts.hotline:
            lines.append(f"**{t(lang, 'hotline')}**: {card.contacts.hotline}")
        if card.contacts.email:
            lines.append(f"**{t(lang, 'email')}**: {card.contacts.email}")

    if card.links:
        lines.append(f"**{t(lang, 'links')}**: " + " · ".join(card.links))

    return "\n".join(lines)


def render_message(message: AssistantMessage, lang: str) -> str:
    parts = [message.text]
    parts.extend(render_card(card, lang) for card in message.cards)
    if message.kind == ResponseKind.CLOSING:
        parts.append(f"_{t(lang, 'resetHint')}_")
    return "\n\n".join(parts)


def build_actions(message: Optional[AssistantMessage], lang: str) -> List[cl.Action]:
    """Quick replies + các nút luôn có (Restart, Urgent, đổi ngôn ngữ)."""
    actions = []
    seen = set()

    if message is not None:
        for reply in message.quick_replies:
            if reply.action is not None:
                actions.append(cl.Action(
                    name="dialog_action",
                    payload={"action": reply.action.to_dict()},
                    label=reply.label,
                ))
                seen.add(reply.action.type)
            elif reply.send_text:
                actions.append(cl.Action(
                    name="quick_text",
                    payload={"text": reply.send_text},
                    label=reply.label,
                ))

        if message.escalation is not None and message.escalation.recommended:
            actions.append(cl.Action(name="escalate_form", payload={}, label=t(lang, "escalate")))

    if ActionType.RESTART not in seen:
        actions.append(cl.Action(
            name="dialog_action",
            payload={"action": Action(ActionType.RESTART).to_dict()},
            label=t(lang, "reset"),
        ))
    if ActionType.URGENT not in seen:
        actions.append(cl.Action(
            name="dialog_action",
            payload={"action": Action(ActionType.URGENT).to_dict()},
            label=t(lang, "urgent"),
        ))

    other_lang = "zh" if lang == "en" else "en"
    actions.append(cl.Action(
        name="dialog_action",
        payload={"action": Action(ActionType.RESTART, lang=other_lang).to_dict()},
        label=t(lang, "switchLang"),
    ))
    return actions


async def send_turn(result: TurnResult) -> None:
    lang = result.state.lang
    cl.user_session.set("lang", lang)
    if result.message is None:
        return
    await cl.Message(
        content=render_message(result.message, lang),
        actions=build_actions(result.message, lang),
    ).send()


# ==================== Chainlit handlers ====================

@cl.on_chat_start
async def on_chat_start():
    session_id = cl.user_session.get("id")
    cl.user_session.set("session_id", session_id)

    lang = resolve_lang(os.getenv("DEFAULT_LANG", Config.DEFAULT_LANG))
    await cl.Message(content=f"## {t(lang, 'title')}\n{t(lang, 'subtitle')}").send()
    result = get_pipeline().start_session(session_id, lang)
    await send_turn(result)
    logger.info(f"Phiên mới: {session_id}")


async def _process_text(text: str) -> None:
    session_id = cl.user_session.get("session_id")
    lang = cl.user_session.get("lang") or Config.DEFAULT_LANG
    logger.info(f"Tin nhắn từ {session_id}: {text[:50]}")

    async with cl.Step(name=t(lang, "processing")) as step:
        result = get_pipeline().process_text(session_id, text)
        step.output = t(lang, "failed") if result.message and result.message.kind == ResponseKind.ERROR else t(lang, "done")

    await send_turn(result)


@cl.on_message
async def on_message(message: cl.Message):
    await _process_text(message.content)


@cl.action_callback("quick_text")
async def on_quick_text(action: cl.Action):
    text = action.payload.get("text", "")
    await cl.Message(content=text, author="You").send()
    await _process_text(text)


@cl.action_callback("dialog_action")
async def on_dialog_action(action: cl.Action):
    session_id = cl.user_session.get("session_id")
    result = get_pipeline().process_action(session_id, action.payload.get("action"))
    await send_turn(result)


@cl.action_callback("escalate_form")
async def on_escalate_form(action: cl.Action):
    session_id = cl.user_session.get("session_id")
    lang = cl.user_session.get("lang") or Config.DEFAULT_LANG
    await action.remove()

    await cl.Message(content=f"**{t(lang, 'ticketTitle')}**\n\n{t(lang, 'ticketHint')}").send()

    answers = {}
    for key in ("name", "contact", "ticketSummary"):
        res = await cl.AskUserMessage(content=t(lang, key), timeout=300).send()
        answers[key] = res["output"].strip() if res else None

    ticket = get_pipeline().create_ticket(
        session_id,
        name=answers["name"],
        contact=answers["contact"],
        summary=answers["ticketSummary"],
    )
    if ticket is None:
        await cl.Message(content=t(lang, "ticketFailed")).send()
        return

    logger.info(f"Ticket {ticket.ticket_id} tạo cho phiên {session_id}")
    await cl.Message(content=f"{t(lang, 'ticketCreated')} (#{ticket.ticket_id[:8]})").send()


@cl.on_chat_end
async def on_chat_end():
    session_id = cl.user_session.get("session_id")

    if session_id:
        try:
            get_pipeline().clear_session(session_id)
            logger.info(f"Kết thúc phiên: {session_id}")
        except Exception as e:
            logger.error(f"Lỗi xóa phiên: {e}")


if __name__ == "__main__":
    run_chainlit(__file__)
