from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime


# ==============================================================================
# ENUMS
# ==============================================================================

class DomainEnum(str, Enum):
    # Thứ tự khai báo = thứ tự đánh giá hard rule
    FINANCIAL = "financial"
    HOUSING = "housing"
    HEALTHCARE = "healthcare"
    SENIORS = "seniors"
    DISABILITY = "disability"
    LEGAL = "legal"
    MENTAL = "mental"


class DialogStep(str, Enum):
    CHOOSE_DOMAIN = "choose_domain"
    CHOOSE_FOCUS = "choose_focus"
    REFINE_AND_SHOW = "refine_and_show"


class FocusEnum(str, Enum):
    OVERVIEW = "overview"
    ELIGIBILITY = "eligibility"
    STEPS = "steps"


class CardFocus(str, Enum):
    OVERVIEW = "overview"
    ELIGIBILITY = "eligibility"
    STEPS = "steps"
    ENTRY = "entry"             # entry-point card, renders links + contacts


class ActionType(str, Enum):
    RESTART = "RESTART"
    BACK_TOPICS = "BACK_TOPICS"
    URGENT = "URGENT"
    SENSITIVE = "SENSITIVE"
    SET_DOMAIN = "SET_DOMAIN"
    SET_FOCUS = "SET_FOCUS"
    ADD_QUERY = "ADD_QUERY"
    MORE_RESULTS = "MORE_RESULTS"
    END = "END"
    ESCALATE = "ESCALATE"
    NOOP = "NOOP"


class EscalationReason(str, Enum):
    SENSITIVE = "sensitive"
    URGENT = "urgent"
    LOW_CONFIDENCE = "low_confidence"
    USER_REQUESTED = "user_requested"


class ResponseKind(str, Enum):
    WELCOME = "welcome"
    EMPTY_INPUT = "empty_input"
    SENSITIVE = "sensitive"
    URGENT = "urgent"
    DOMAIN_INTRO = "domain_intro"
    DOMAIN_UNRESOLVED = "domain_unresolved"
    TOPICS = "topics"
    FOCUS_QUESTION = "focus_question"
    RESULTS = "results"
    NO_RESULTS = "no_results"
    NO_MORE_RESULTS = "no_more_results"
    ESCALATION = "escalation"
    CLOSING = "closing"
    ERROR = "error"


SUPPORTED_LANGS = ("en", "zh")


def resolve_lang(lang: Optional[str]) -> str:
    if lang and lang.lower().startswith("zh"):
        return "zh"
    return "en"


def pick_lang(en_value, zh_value, lang: str):
    """Chọn giá trị theo ngôn ngữ, fallback sang tiếng Anh khi bản zh trống."""
    if lang == "zh" and zh_value:
        return zh_value
    return en_value if en_value else zh_value


# ==============================================================================
# KNOWLEDGE BASE RECORDS
# ==============================================================================

@dataclass(frozen=True)
class Contacts:
    hotline: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"hotline": self.hotline, "email": self.email}


@dataclass(frozen=True)
class Scheme:
    scheme_id: str
    category: str
    name_en: str
    name_zh: str = ""
    summary_en: str = ""
    summary_zh: str = ""
    eligibility_en: List[str] = field(default_factory=list)
    eligibility_zh: List[str] = field(default_factory=list)
    how_to_apply_en: List[str] = field(default_factory=list)
    how_to_apply_zh: List[str] = field(default_factory=list)
    keywords_en: List[str] = field(default_factory=list)
    keywords_zh: List[str] = field(default_factory=list)
    official_links: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class EntryPoint:
    entry_id: str
    name_en: str
    name_zh: str = ""
    links: List[str] = field(default_factory=list)
    contacts: Optional[Contacts] = None
    tags: List[str] = field(default_factory=list)     # crisis | urgent | general


# ==============================================================================
# DIALOG STATE & ACTIONS
# ==============================================================================

@dataclass(frozen=True)
class DialogState:
    lang: str = "en"
    step: DialogStep = DialogStep.CHOOSE_DOMAIN
    domain_id: Optional[DomainEnum] = None
    focus: FocusEnum = FocusEnum.OVERVIEW
    last_query: str = ""
    offset: int = 0
    page_size: int = 3
    ended: bool = False

    def evolve(self, **changes) -> "DialogState":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lang": self.lang,
            "step": self.step.value,
            "domain_id": self.domain_id.value if self.domain_id else None,
            "focus": self.focus.value,
            "last_query": self.last_query,
            "offset": self.offset,
            "page_size": self.page_size,
            "ended": self.ended,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DialogState":
        domain = data.get("domain_id")
        page_size = int(data.get("page_size") or 3)
        offset = max(0, int(data.get("offset") or 0))
        return cls(
            lang=resolve_lang(data.get("lang")),
            step=DialogStep(data.get("step", DialogStep.CHOOSE_DOMAIN.value)),
            domain_id=DomainEnum(domain) if domain else None,
            focus=FocusEnum(data.get("focus", FocusEnum.OVERVIEW.value)),
            last_query=data.get("last_query") or "",
            offset=offset - offset % page_size,
            page_size=page_size,
            ended=bool(data.get("ended", False)),
        )


@dataclass(frozen=True)
class Action:
    type: ActionType
    domain_id: Optional[str] = None
    focus: Optional[str] = None
    text: Optional[str] = None
    lang: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type.value}
        for key in ("domain_id", "focus", "text", "lang"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        raw_type = str((data or {}).get("type", "")).upper()
        try:
            action_type = ActionType(raw_type)
        except ValueError:
            action_type = ActionType.NOOP
        return cls(
            type=action_type,
            domain_id=data.get("domain_id") if data else None,
            focus=data.get("focus") if data else None,
            text=data.get("text") if data else None,
            lang=data.get("lang") if data else None,
        )


# ==============================================================================
# OUTBOUND MESSAGE
# ==============================================================================

@dataclass
class ResultCard:
    card_id: str
    title: str
    summary: str = ""
    eligibility: List[str] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    focus: CardFocus = CardFocus.OVERVIEW
    contacts: Optional[Contacts] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.card_id,
            "title": self.title,
            "summary": self.summary,
            "eligibility": list(self.eligibility),
            "steps": list(self.steps),
            "links": list(self.links),
            "focus": self.focus.value,
            "contacts": self.contacts.to_dict() if self.contacts else None,
        }


@dataclass
class QuickReply:
    reply_id: str
    label: str
    send_text: Optional[str] = None
    action: Optional[Action] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.reply_id,
            "label": self.label,
            "send_text": self.send_text,
            "action": self.action.to_dict() if self.action else None,
        }


@dataclass
class EscalationRecommendation:
    recommended: bool
    reason: Optional[EscalationReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommended": self.recommended,
            "reason": self.reason.value if self.reason else None,
        }


@dataclass
class AssistantMessage:
    text: str
    kind: ResponseKind
    cards: List[ResultCard] = field(default_factory=list)
    quick_replies: List[QuickReply] = field(default_factory=list)
    escalation: Optional[EscalationRecommendation] = None
    role: str = "assistant"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "kind": self.kind.value,
            "text": self.text,
            "cards": [c.to_dict() for c in self.cards],
            "quick_replies": [q.to_dict() for q in self.quick_replies],
            "escalation": self.escalation.to_dict() if self.escalation else None,
        }


@dataclass
class TurnResult:
    state: DialogState
    message: Optional[AssistantMessage]


# ==============================================================================
# CLASSIFICATION & RETRIEVAL RESULTS
# ==============================================================================

@dataclass
class SafetyResult:
    sensitive: bool = False
    urgent: bool = False
    matched_pattern: Optional[str] = None

    @property
    def is_clear(self) -> bool:
        return not (self.sensitive or self.urgent)


@dataclass
class DomainMatch:
    domain: Optional[DomainEnum]
    method: str = "none"            # hard | soft | none
    score: int = 0
    scores: Dict[str, int] = field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        return self.domain is not None


@dataclass
class ScoredScheme:
    scheme: Scheme
    score: int
    position: int                   # thứ tự gốc trong knowledge base


@dataclass
class RetrievalResult:
    query: str
    domain_id: Optional[DomainEnum]
    tokens: List[str]
    items: List[ScoredScheme] = field(default_factory=list)
    top_score: int = 0
    low_confidence: bool = True

    @property
    def total(self) -> int:
        return len(self.items)


@dataclass
class EscalationTicket:
    ticket_id: str
    session_id: str
    reason: EscalationReason
    lang: str
    domain_id: Optional[str] = None
    last_query: str = ""
    name: Optional[str] = None
    contact: Optional[str] = None
    summary: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "session_id": self.session_id,
            "reason": self.reason.value,
            "lang": self.lang,
            "domain_id": self.domain_id,
            "last_query": self.last_query,
            "name": self.name,
            "contact": self.contact,
            "summary": self.summary,
            "created_at": self.created_at,
        }


# ==============================================================================
# CONFIGURATION
# ==============================================================================

class Config:
    # Scoring weights (SchemeScorer)
    SCORING_WEIGHTS = {
        "token_match": 3,
        "title_match": 2,
        "domain_match": 10,
        "short_query_bonus": 2,
    }
    SHORT_QUERY_MAX_TOKENS = 2

    # Low-confidence threshold theo profile
    LOW_CONFIDENCE_THRESHOLDS = {
        "default": 5,
        "strict": 6,
    }
    DEFAULT_PROFILE = "default"

    # Retrieval bounds
    MAX_RESULTS = 50
    PAGE_SIZE = 3
    OVERVIEW_MAX_ITEMS = 4

    # Soft domain matching
    SOFT_MATCH_WEIGHTS = {
        "hint": 3,
        "token_overlap": 1,
        "domain_id": 1,
    }
    SOFT_MATCH_MIN_SCORE = 3

    # Session
    SESSION_TTL_SECONDS = 1800
    DEFAULT_LANG = "en"


# ==============================================================================
# DOMAIN TABLES
# ==============================================================================

DOMAIN_CATEGORY_MAP: Dict[DomainEnum, str] = {
    DomainEnum.FINANCIAL: "financial_assistance",
    DomainEnum.HOUSING: "housing_assistance",
    DomainEnum.HEALTHCARE: "healthcare_support",
    DomainEnum.SENIORS: "elderly_support",
    DomainEnum.DISABILITY: "disability_support",
    DomainEnum.LEGAL: "legal_aid",
    DomainEnum.MENTAL: "mental_health_support",
}

DOMAIN_LABELS: Dict[DomainEnum, Dict[str, str]] = {
    DomainEnum.FINANCIAL: {"en": "Financial Assistance", "zh": "经济援助"},
    DomainEnum.HOUSING: {"en": "Housing", "zh": "住房支持"},
    DomainEnum.HEALTHCARE: {"en": "Healthcare", "zh": "医疗支持"},
    DomainEnum.SENIORS: {"en": "Seniors", "zh": "长者支持"},
    DomainEnum.DISABILITY: {"en": "Disability Support", "zh": "残障支持"},
    DomainEnum.LEGAL: {"en": "Legal Aid", "zh": "法律援助"},
    DomainEnum.MENTAL: {"en": "Mental Wellbeing", "zh": "心理健康"},
}

# Hint phrases cho soft classifier (đã ở dạng canonical sau normalize)
DOMAIN_HINTS: Dict[DomainEnum, List[str]] = {
    DomainEnum.FINANCIAL: [
        "financial hardship", "daily expenses", "groceries", "food",
        "utility bills", "job loss", "salary", "household expenses", "debt",
    ],
    DomainEnum.HOUSING: [
        "place to live", "room", "roof", "home", "shelter", "mortgage",
        "tenancy", "move house",
    ],
    DomainEnum.HEALTHCARE: [
        "medical bills", "sick", "illness", "surgery", "medication",
        "health check", "specialist", "polyclinic",
    ],
    DomainEnum.SENIORS: [
        "senior", "grandparent", "old parents", "pension", "aged care",
        "nursing home", "eldercare",
    ],
    DomainEnum.DISABILITY: [
        "mobility", "hearing aid", "blind", "deaf", "autism", "therapy",
        "special education", "caregiving",
    ],
    DomainEnum.LEGAL: [
        "contract", "dispute", "rights", "police", "power of attorney", "custody",
        "maintenance order", "tribunal",
    ],
    DomainEnum.MENTAL: [
        "sad", "worried", "cannot sleep", "overwhelmed", "emotional support",
        "talk to someone", "feeling down", "wellbeing",
    ],
}

# Câu hỏi làm rõ theo domain (SET_FOCUS khi chưa có query)
CLARIFICATION_QUESTIONS: Dict[DomainEnum, Dict[str, str]] = {
    DomainEnum.FINANCIAL: {
        "en": "What kind of help do you need most right now: daily expenses, bills, or income after losing a job?",
        "zh": "你现在最需要哪方面的帮助：日常开销、账单，还是失业后的收入？",
    },
    DomainEnum.HOUSING: {
        "en": "Are you looking for rental housing, help with rent arrears, or temporary shelter?",
        "zh": "你需要的是租赁组屋、房租拖欠援助，还是临时住所？",
    },
    DomainEnum.HEALTHCARE: {
        "en": "Is this about clinic visits, a hospital bill, or long-term treatment costs?",
        "zh": "是关于诊所看病、医院账单，还是长期治疗费用？",
    },
    DomainEnum.SENIORS: {
        "en": "Is this support for yourself or for an elderly family member? Cash support, healthcare, or care services?",
        "zh": "是为你自己还是为家中长者申请？需要现金补助、医疗，还是照护服务？",
    },
    DomainEnum.DISABILITY: {
        "en": "Do you need assistive devices, transport, or caregiver support?",
        "zh": "你需要辅助器材、交通支持，还是照顾者支持？",
    },
    DomainEnum.LEGAL: {
        "en": "What is the legal matter about: family, employment, debt, or something else?",
        "zh": "是什么类型的法律问题：家庭、就业、债务，还是其他？",
    },
    DomainEnum.MENTAL: {
        "en": "Would you like someone to talk to now, or information about counselling services?",
        "zh": "你希望现在找人倾诉，还是了解辅导服务的信息？",
    },
}

# Quick queries gợi ý theo domain
QUICK_QUERIES: Dict[DomainEnum, Dict[str, List[str]]] = {
    DomainEnum.FINANCIAL: {
        "en": ["cash assistance", "utility bills", "lost my job"],
        "zh": ["现金援助", "水电费", "失业"],
    },
    DomainEnum.HOUSING: {
        "en": ["rental flat", "rent arrears", "temporary shelter"],
        "zh": ["租赁组屋", "房租拖欠", "临时住所"],
    },
    DomainEnum.HEALTHCARE: {
        "en": ["chas clinic", "hospital bill", "medishield"],
        "zh": ["CHAS诊所", "医院账单", "终身健保"],
    },
    DomainEnum.SENIORS: {
        "en": ["silver support", "pioneer generation", "eldercare services"],
        "zh": ["乐龄补贴", "建国一代", "乐龄照护"],
    },
    DomainEnum.DISABILITY: {
        "en": ["assistive devices", "transport concession", "caregiver support"],
        "zh": ["辅助器材", "交通优惠", "照顾者支持"],
    },
    DomainEnum.LEGAL: {
        "en": ["legal aid", "free legal clinic", "divorce"],
        "zh": ["法律援助", "免费法律诊所", "离婚"],
    },
    DomainEnum.MENTAL: {
        "en": ["counselling", "feeling stressed", "helpline"],
        "zh": ["心理辅导", "压力大", "热线"],
    },
}

FOCUS_LABELS: Dict[FocusEnum, Dict[str, str]] = {
    FocusEnum.OVERVIEW: {"en": "Overview", "zh": "概览"},
    FocusEnum.ELIGIBILITY: {"en": "Eligibility", "zh": "申请资格"},
    FocusEnum.STEPS: {"en": "How to apply", "zh": "申请步骤"},
}


# ==============================================================================
# MESSAGE TEMPLATES
# ==============================================================================

MESSAGE_TEMPLATES: Dict[str, Dict[str, str]] = {
    "WELCOME": {
        "en": "Hi! I can help you find official support schemes in Singapore. Pick a topic below, or describe your situation in a few words.",
        "zh": "你好！我可以帮你查找新加坡的官方支持计划。请选择下面的主题，或用几句话描述你的情况。",
    },
    "EMPTY_INPUT": {
        "en": "I didn't catch anything there. You can type a few words about your situation, or tap one of the options below.",
        "zh": "我没有收到内容。你可以输入几句话描述你的情况，或点击下面的选项。",
    },
    "SENSITIVE": {
        "en": "I'm really sorry you're feeling this way. You don't have to go through this alone. Please reach out to one of these services now. They are available to listen and help.",
        "zh": "听到你有这样的感受，我很难过。你不需要独自面对。请立即联系以下服务，他们随时愿意倾听并提供帮助。",
    },
    "URGENT": {
        "en": "This sounds urgent. Please contact one of these services right away so someone can help you today.",
        "zh": "这听起来很紧急。请立即联系以下服务，今天就能有人协助你。",
    },
    "DOMAIN_INTRO": {
        "en": "I'm sorry you're dealing with this. Let's look at {label} support together. What would you like to know first?",
        "zh": "很抱歉你正面对这些困难。我们一起来看看{label}方面的支持。你想先了解什么？",
    },
    "DOMAIN_UNRESOLVED": {
        "en": "I want to make sure I point you to the right help. Which of these topics is closest to what you need?",
        "zh": "为了给你最合适的帮助，请问下面哪个主题最接近你的需要？",
    },
    "TOPICS": {
        "en": "Sure. Which topic would you like to explore?",
        "zh": "好的。你想了解哪个主题？",
    },
    "FOCUS_PROMPT": {
        "en": "Tell me a bit more about your situation, or tap a suggestion below.",
        "zh": "请多告诉我一些你的情况，或点击下面的建议。",
    },
    "REFINE_PROMPT": {
        "en": "Type a few more words about what you need and I'll look again.",
        "zh": "请再输入几句话说明你的需要，我会重新查找。",
    },
    "RESULTS": {
        "en": "Here are some schemes that may help with {label}:",
        "zh": "以下是一些可能对{label}有帮助的计划：",
    },
    "RESULTS_NO_DOMAIN": {
        "en": "Here are some schemes that may help:",
        "zh": "以下是一些可能有帮助的计划：",
    },
    "RESULTS_LOW_CONFIDENCE": {
        "en": "I'm not fully sure these match your situation, but they may be a good starting point. You can also contact the official services below for personal advice.",
        "zh": "我不完全确定这些是否符合你的情况，但可以作为起点。你也可以联系下面的官方服务获取个人建议。",
    },
    "NO_RESULTS": {
        "en": "I couldn't find an exact match. You can start from these official entry points, or try a simpler keyword.",
        "zh": "我暂时没找到完全匹配的项目。你可以从以下官方入口开始查询，或换一个更简单的关键词再试。",
    },
    "NO_MORE_RESULTS": {
        "en": "That's all the schemes I found for this search. If none of them fit, I can suggest speaking with a caseworker.",
        "zh": "这次搜索的结果已全部显示。如果都不合适，我可以建议你联系社工。",
    },
    "ESCALATION": {
        "en": "I'll flag this conversation for a caseworker to follow up. In the meantime, you can reach these services directly.",
        "zh": "我会将这次对话转交社工跟进。在此期间，你也可以直接联系以下服务。",
    },
    "CLOSING": {
        "en": "Thank you for reaching out. Take care, and come back any time you need help.",
        "zh": "谢谢你的咨询。请保重，有需要时随时回来。",
    },
    "ERROR": {
        "en": "Sorry, something went wrong on my side. Please try again, or contact ComCare at 1800-222-0000.",
        "zh": "抱歉，系统出现了问题。请稍后再试，或致电 ComCare 热线 1800-222-0000。",
    },
}

QUICK_REPLY_LABELS: Dict[str, Dict[str, str]] = {
    "MORE_RESULTS": {"en": "More results", "zh": "更多结果"},
    "BACK_TOPICS": {"en": "Other topics", "zh": "其他主题"},
    "RESTART": {"en": "Start over", "zh": "重新开始"},
    "END": {"en": "End chat", "zh": "结束对话"},
    "ESCALATE": {"en": "Talk to a person", "zh": "转人工"},
    "URGENT": {"en": "I need urgent help", "zh": "我需要紧急帮助"},
}


# ==============================================================================
# LOGGING SCHEMA
# ==============================================================================

@dataclass
class InteractionLog:
    session_id: str
    timestamp: datetime
    input_type: str                 # text | action
    user_input: str
    step_before: str
    step_after: str
    domain_id: Optional[str]
    response_kind: str
    result_count: int
    low_confidence: bool
    escalation_reason: Optional[str]
    total_latency_ms: int
