"""Chuỗi giao diện tĩnh (en/zh) cho chat UI."""

from typing import Dict

UI: Dict[str, Dict[str, str]] = {
    "en": {
        "title": "Social Good Assistant (Singapore)",
        "subtitle": "Simple keywords → guided questions → plain-language guidance → optional human escalation.",
        "processing": "Looking up schemes...",
        "done": "Done",
        "failed": "Error",
        "urgent": "Urgent help",
        "reset": "Restart",
        "switchLang": "中文",
        "resetHint": 'If you want another service type, type a new keyword (e.g., "financial aid", "housing grant", "medical help", "support for seniors").',
        "eligibility": "Eligibility",
        "steps": "How to apply",
        "links": "Official links",
        "hotline": "Hotline",
        "email": "Email",
        "escalate": "Escalate to human",
        "ticketTitle": "Escalation to Human Support",
        "ticketHint": "For urgent/complex cases, we create a ticket for a human caseworker follow-up.",
        "name": "Name",
        "contact": "Email or phone",
        "ticketSummary": "Brief summary",
        "ticketCreated": "Ticket created. A caseworker will follow up.",
        "ticketFailed": "Sorry, the ticket could not be created. Please call the hotlines above.",
    },
    "zh": {
        "title": "社会公益对话助手（新加坡）",
        "subtitle": "输入简单关键词 → 引导追问 → 简化指引 → 必要时转人工。",
        "processing": "正在查找相关计划…",
        "done": "完成",
        "failed": "出错",
        "urgent": "紧急求助",
        "reset": "重新开始",
        "switchLang": "English",
        "resetHint": "如果你还想了解其他服务类型，请输入新的关键词（例如：经济援助 / 住房补助 / 医疗补贴 / 长者支持）。",
        "eligibility": "申请资格",
        "steps": "申请步骤",
        "links": "官方链接",
        "hotline": "热线",
        "email": "邮箱",
        "escalate": "转人工支持",
        "ticketTitle": "转人工支持（社工/工作人员）",
        "ticketHint": "紧急/复杂情况将创建工单，由工作人员跟进。",
        "name": "姓名",
        "contact": "邮箱或电话",
        "ticketSummary": "简要描述",
        "ticketCreated": "工单已创建，工作人员将联系你。",
        "ticketFailed": "抱歉，工单创建失败，请直接拨打以上热线。",
    },
}


def t(lang: str, key: str) -> str:
    """Lấy chuỗi theo ngôn ngữ; fallback sang English rồi tới chính key."""
    return UI.get(lang, {}).get(key) or UI["en"].get(key) or key
