import re
import logging
from typing import Dict, List, Optional, Pattern, Tuple

from schema import (
    DomainEnum,
    DomainMatch,
    SafetyResult,
    Config,
    DOMAIN_HINTS,
)
from normalize_content import TextNormalizer, _norm_text

logger = logging.getLogger(__name__)


def _compile_en(patterns: List[str]) -> List[Pattern]:
    return [re.compile(r"\b(?:" + p + r")\b") for p in patterns]


def _compile_zh(patterns: List[str]) -> List[Pattern]:
    return [re.compile(p) for p in patterns]


# ==============================================================================
# SAFETY CLASSIFIER
# ==============================================================================

class SafetyClassifier:
    """
    Phát hiện tín hiệu nhạy cảm (self-harm) và khẩn cấp (homelessness, eviction...).

    Hai danh sách trigger độc lập, đánh giá trên raw text đã lower-case.
    Không match là kết quả bình thường.
    """

    SENSITIVE_PATTERNS: List[Pattern] = _compile_en([
        r"kill(?:ing)? myself",
        r"suicid\w*",
        r"end(?:ing)? my life",
        r"end it all",
        r"(?:want|wanna|going) to die",
        r"(?:hurt|harm|cut)(?:ing)? myself",
        r"self[- ]?harm\w*",
        r"no reason to live",
        r"don'?t want to (?:live|be alive)",
        r"better off dead",
    ]) + _compile_zh([
        r"自杀", r"想死", r"不想活", r"活不下去", r"轻生",
        r"伤害自己", r"结束生命", r"自残",
    ])

    URGENT_PATTERNS: List[Pattern] = _compile_en([
        r"homeless(?:ness)?",
        r"evict\w*",
        r"no (?:place|where) to (?:stay|sleep|live|go)",
        r"nowhere to (?:stay|sleep|live|go)",
        r"sleeping (?:rough|outside|on the streets?)",
        r"(?:kicked|thrown|locked) out",
        r"domestic violence",
        r"(?:being|been|getting) (?:abused|beaten|hit)",
        r"in danger",
        r"emergency",
        r"no food (?:today|tonight)",
        r"haven'?t eaten",
    ]) + _compile_zh([
        r"无家可归", r"被赶出", r"赶出来", r"被驱逐", r"没(?:有)?地方住",
        r"露宿", r"家暴", r"家庭暴力", r"紧急", r"有危险", r"没饭吃",
    ])

    def classify(self, raw: str) -> SafetyResult:
        text = _norm_text(raw)
        if not text:
            return SafetyResult()

        sensitive_hit = self._first_match(text, self.SENSITIVE_PATTERNS)
        urgent_hit = self._first_match(text, self.URGENT_PATTERNS)

        if sensitive_hit or urgent_hit:
            logger.info(
                f"Safety signal: sensitive={bool(sensitive_hit)}, "
                f"urgent={bool(urgent_hit)}, pattern='{sensitive_hit or urgent_hit}'"
            )

        return SafetyResult(
            sensitive=sensitive_hit is not None,
            urgent=urgent_hit is not None,
            matched_pattern=sensitive_hit or urgent_hit,
        )

    @staticmethod
    def _first_match(text: str, patterns: List[Pattern]) -> Optional[str]:
        for pattern in patterns:
            m = pattern.search(text)
            if m:
                return m.group(0)
        return None


# ==============================================================================
# DOMAIN CLASSIFIER
# ==============================================================================

class DomainClassifier:
    """
    Map normalized text → DomainEnum.

    1. Hard match: HARD_RULES theo thứ tự cố định, rule đầu tiên match thắng
       (tie-break theo thứ tự, không theo độ mạnh).
    2. Soft match (chỉ khi hard fail): cộng điểm theo DOMAIN_HINTS, cần tối thiểu
       SOFT_MATCH_MIN_SCORE, nếu không thì unresolved.
    """

    # ========================================================================
    # HARD RULES - Order matters! financial → housing → healthcare → seniors
    #             → disability → legal → mental
    # ========================================================================
    # "financial hardship" (canonical) cố ý KHÔNG có ở đây: "can't afford my
    # hospital bill" phải rơi vào healthcare.
    HARD_RULES: List[Tuple[DomainEnum, List[Pattern]]] = [
        (DomainEnum.FINANCIAL, _compile_en([
            r"financial assistance",
            r"cash",
            r"income",
            r"comcare",
            r"allowance",
            r"gst vouchers?",
            r"job loss",
            r"utility bills",
            r"debts?",
        ])),
        (DomainEnum.HOUSING, _compile_en([
            r"housing",
            r"rent(?:al|ing)?",
            r"hdb",
            r"flat",
            r"landlord",
            r"accommodation",
            r"shelter",
        ]) + _compile_zh([r"住房", r"租房"])),
        (DomainEnum.HEALTHCARE, _compile_en([
            r"medical",
            r"hospital",
            r"(?<!legal )clinics?",
            r"doctor",
            r"chas",
            r"medifund",
            r"medishield",
            r"healthcare",
            r"medicine",
            r"treatment",
            r"dental",
        ])),
        (DomainEnum.SENIORS, _compile_en([
            r"senior",
            r"retire\w*",
            r"pioneer generation",
            r"merdeka generation",
            r"silver support",
            r"old age",
        ])),
        (DomainEnum.DISABILITY, _compile_en([
            r"disabilit(?:y|ies)",
            r"wheelchair",
            r"assistive",
            r"special needs",
            r"caregivers?",
        ])),
        (DomainEnum.LEGAL, _compile_en([
            r"legal",
            r"lawyers?",
            r"court",
            r"divorce",
            r"lawsuit",
            r"sued",
        ])),
        (DomainEnum.MENTAL, _compile_en([
            r"mental health",
            r"mental",
            r"stress(?:ed)?",
            r"anxiety",
            r"anxious",
            r"depress\w*",
            r"counsell\w*",
            r"lonely",
            r"loneliness",
            r"burn(?:ed|t)? ?out",
        ])),
    ]

    def __init__(
        self,
        hints: Optional[Dict[DomainEnum, List[str]]] = None,
        min_score: int = None,
        weights: Optional[Dict[str, int]] = None,
    ):
        self.hints = hints or DOMAIN_HINTS
        self.min_score = Config.SOFT_MATCH_MIN_SCORE if min_score is None else min_score
        self.weights = weights or Config.SOFT_MATCH_WEIGHTS

    def classify(self, raw: str) -> DomainMatch:
        text = _norm_text(TextNormalizer.normalize(raw))
        if not text:
            return DomainMatch(domain=None)

        domain = self.hard_match(text)
        if domain is not None:
            logger.info(f"Domain hard match: {domain.value}")
            return DomainMatch(domain=domain, method="hard")

        match = self.soft_match(raw, text)
        if match.resolved:
            logger.info(f"Domain soft match: {match.domain.value} (score={match.score})")
        else:
            logger.info(f"Domain unresolved (scores={match.scores})")
        return match

    def hard_match(self, normalized_text: str) -> Optional[DomainEnum]:
        for domain, patterns in self.HARD_RULES:
            if any(p.search(normalized_text) for p in patterns):
                return domain
        return None

    def soft_match(self, raw: str, normalized_text: str) -> DomainMatch:
        tokens = TextNormalizer.tokenize(raw)
        raw_lower = _norm_text(raw)

        scores: Dict[str, int] = {}
        best_domain = None
        best_score = 0

        # Duyệt theo thứ tự DomainEnum, chỉ thay khi strictly greater → tie giữ domain trước
        for domain in DomainEnum:
            hints = [_norm_text(h) for h in self.hints.get(domain, [])]
            score = 0
            for hint in hints:
                if hint and hint in normalized_text:
                    score += self.weights["hint"]
            for token in tokens:
                if any(self._overlaps(token, hint) for hint in hints):
                    score += self.weights["token_overlap"]
            if domain.value in raw_lower:
                score += self.weights["domain_id"]

            scores[domain.value] = score
            if score > best_score:
                best_domain = domain
                best_score = score

        if best_domain is None or best_score < self.min_score:
            return DomainMatch(domain=None, method="none", score=best_score, scores=scores)
        return DomainMatch(domain=best_domain, method="soft", score=best_score, scores=scores)

    @staticmethod
    def _overlaps(token: str, hint: str) -> bool:
        if not token or not hint:
            return False
        if len(token) < 2 and token.isascii():
            return False
        return token in hint or hint in token
