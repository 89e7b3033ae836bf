"""
Text normalization cho query song ngữ (English / 中文)
=====================================================

- Synonym folding: nhiều cách diễn đạt → một cụm canonical tiếng Anh
- Tokenize: casefold, bỏ dấu câu (giữ chữ Unicode + số), bỏ stopwords
- Helpers `_strip_accents` / `_norm_text` dùng chung cho classifier và retriever
"""

import re
import unicodedata
from typing import List, Pattern, Tuple


_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]|_")
_SOFT_PUNCT_RE = re.compile(r"[^\w\s'’‘ʼ]|_")
_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})
_POSSESSIVE_RE = re.compile(r"(?<=\w)'s\b", re.IGNORECASE)


def _strip_accents(s: str) -> str:
    """Remove diacritics (café → cafe). CJK characters pass through unchanged."""
    decomposed = unicodedata.normalize("NFKD", s)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _norm_text(s: str) -> str:
    if s is None:
        return ""
    s = str(s).translate(_APOSTROPHES).strip().lower()
    s = _strip_accents(s)
    s = _WS_RE.sub(" ", s)
    return s


def _en(pattern: str) -> Pattern:
    return re.compile(r"\b(?:" + pattern + r")\b", re.IGNORECASE)


def _zh(pattern: str) -> Pattern:
    return re.compile(pattern)


class TextNormalizer:
    """
    Canonicalize raw bilingual text.

    SYNONYM_RULES được áp dụng tuần tự; output của rule trước là input của rule sau,
    nên các chuỗi near-synonym hội tụ về cùng một cụm canonical. Mọi cụm canonical
    phải là fixed point của toàn bộ bảng (tokenize idempotent).
    """

    # ========================================================================
    # SYNONYM RULES - Ordered by PRIORITY (more specific FIRST)
    # ========================================================================
    SYNONYM_RULES: List[Tuple[Pattern, str]] = [
        # === Financial hardship ===
        (_en(r"(?:can'?t|cannot|can not|unable to) afford"), "financial hardship"),
        (_en(r"no money|short of money|broke|struggling financially|money problems?|tight on money"), "financial hardship"),
        (_zh(r"没钱|缺钱|经济困难|经济拮据|付不起|负担不起"), "financial hardship"),
        (_en(r"cash aid|cash help|money help|financial help"), "financial aid"),
        (_en(r"financial aid"), "financial assistance"),
        (_zh(r"经济援助|经济补助|现金援助|财务援助"), "financial assistance"),
        (_en(r"lost (?:my|his|her|our) jobs?|laid off|retrenched|unemployed|jobless|out of work"), "job loss"),
        (_zh(r"失业|被裁员|丢了工作"), "job loss"),
        (_en(r"utilities|utility bills?|electricity bills?|water bills?|power bills?"), "utility bills"),
        (_zh(r"水电费"), "utility bills"),
        (_zh(r"欠债|债务"), "debt"),
        (_zh(r"收入"), "income"),
        (_zh(r"现金"), "cash"),
        (_zh(r"津贴"), "allowance"),
        (_zh(r"补贴|补助"), "subsidy"),

        # === Healthcare ===
        (_en(r"(?:hospital|medical|clinic|doctor'?s?) (?:bill|bills|fees?|costs?)"), "medical bills"),
        (_zh(r"医药费|医疗费|住院费|医院账单"), "medical bills"),
        (_zh(r"终身健保"), "medishield life"),
        (_zh(r"看病|看医生"), "doctor"),
        (_zh(r"医疗"), "medical"),
        (_zh(r"医院"), "hospital"),
        (_zh(r"诊所"), "clinic"),
        (_zh(r"账单"), "bills"),

        # === Seniors ===
        (_zh(r"乐龄补贴"), "silver support"),
        (_zh(r"建国一代"), "pioneer generation"),
        (_zh(r"立国一代"), "merdeka generation"),
        (_en(r"elderly|elders?|old folks|old people|aged parents?|older persons?|seniors"), "senior"),
        (_zh(r"老年人|年长者|老人|长者|乐龄"), "senior"),
        (_zh(r"照护|护理"), "care"),

        # === Housing ===
        (_en(r"hdb flats?|public housing flats?"), "hdb flat"),
        (_zh(r"组屋"), "hdb flat"),
        (_zh(r"临时住所|收容所"), "temporary shelter"),
        (_zh(r"租房|房租|租金"), "rent"),
        (_zh(r"住房|房屋|住屋"), "housing"),

        # === Disability ===
        (_en(r"disabled|handicapped"), "disability"),
        (_zh(r"残疾|残障"), "disability"),
        (_zh(r"轮椅"), "wheelchair"),
        (_zh(r"辅助器材|辅助器具"), "assistive devices"),
        (_zh(r"交通优惠"), "transport concession"),
        (_zh(r"照顾者"), "caregiver"),

        # === Legal ===
        (_zh(r"法律援助"), "legal aid"),
        (_zh(r"法律"), "legal"),
        (_zh(r"律师"), "lawyer"),
        (_zh(r"离婚"), "divorce"),

        # === Mental wellbeing ===
        (_en(r"mental wellbeing|emotional health"), "mental health"),
        (_zh(r"心理健康|精神健康"), "mental health"),
        (_en(r"counseling"), "counselling"),
        (_zh(r"心理辅导|辅导"), "counselling"),
        (_zh(r"压力"), "stress"),
        (_zh(r"焦虑"), "anxiety"),
        (_zh(r"抑郁"), "depression"),
        (_zh(r"热线"), "helpline"),

        # === Common ===
        (_zh(r"申请"), "apply"),
        (_zh(r"免费"), "free"),
    ]

    STOPWORDS = frozenset({
        # English
        "i", "me", "my", "mine", "myself", "we", "our", "us", "you", "your",
        "he", "she", "him", "her", "his", "they", "them", "their", "it", "its",
        "a", "an", "the", "and", "or", "but", "of", "to", "in", "on", "at",
        "for", "with", "from", "by", "about", "is", "am", "are", "was", "were",
        "be", "been", "being", "do", "does", "did", "have", "has", "had",
        "can", "could", "will", "would", "should", "may", "might", "must",
        "this", "that", "these", "those", "there", "here", "what", "which",
        "who", "how", "when", "where", "why", "please", "help", "need",
        "want", "like", "looking", "get", "some", "any", "im", "ive", "dont",
        "s", "t", "m", "d", "ll", "re", "ve", "don", "isn", "doesn", "didn",
        "so", "just", "really", "very", "also", "not",
        # 中文
        "我", "我们", "你", "你们", "他", "她", "它", "他们", "的", "了",
        "吗", "呢", "吧", "啊", "是", "在", "有", "和", "与", "或", "也",
        "都", "就", "很", "想", "要", "需要", "请问", "请", "怎么", "如何",
        "什么", "一些", "一个", "帮助", "帮忙", "可以", "能", "这", "那",
    })

    ZH_STOPWORDS = frozenset(w for w in STOPWORDS if re.match(r"[\u4e00-\u9fff]", w))
    # Dài trước ngắn: "我们" phải thắng "我"
    _ZH_STOP_RE = re.compile("|".join(sorted(ZH_STOPWORDS, key=len, reverse=True)))

    @classmethod
    def normalize(cls, raw: str) -> str:
        """
        Trim + apply SYNONYM_RULES theo thứ tự.

        Whitespace gộp lại và sở hữu cách `'s` bỏ trước khi folding, để "hospital's  bill"
        khớp cùng rule với "hospital bill". Replacement được đệm khoảng trắng để chữ Hán
        liền kề tách thành token riêng.
        """
        if not raw:
            return ""
        text = str(raw).translate(_APOSTROPHES)
        text = _POSSESSIVE_RE.sub("", text)
        text = _WS_RE.sub(" ", text).strip()
        for pattern, canonical in cls.SYNONYM_RULES:
            text = pattern.sub(f" {canonical} ", text)
        return _WS_RE.sub(" ", text).strip()

    @classmethod
    def tokenize(cls, raw: str) -> List[str]:
        # Dấu câu (trừ apostrophe) bỏ trước khi folding để mọi cụm ghép được đều qua SYNONYM_RULES
        text = _SOFT_PUNCT_RE.sub(" ", str(raw or ""))
        text = cls.normalize(text).casefold()
        text = _strip_accents(text)
        text = _PUNCT_RE.sub(" ", text)
        # Chữ Hán không có khoảng trắng: stopword nằm trong run, tách run tại đó
        text = cls._ZH_STOP_RE.sub(" ", text)
        tokens = [t for t in text.split() if t]
        return [t for t in tokens if t not in cls.STOPWORDS]


def normalize(raw: str) -> str:
    return TextNormalizer.normalize(raw)


def tokenize(raw: str) -> List[str]:
    return TextNormalizer.tokenize(raw)
