import logging
from typing import List, Dict, Optional, Tuple, Union

from schema import (
    Scheme,
    DomainEnum,
    Config,
    DOMAIN_CATEGORY_MAP,
)
from normalize_content import TextNormalizer, _norm_text, _strip_accents

logger = logging.getLogger(__name__)


def category_for(domain_hint: Union[DomainEnum, str, None]) -> Optional[str]:
    """Domain id ("healthcare") hoặc category tag ("healthcare_support") → category tag."""
    if domain_hint is None or domain_hint == "":
        return None
    if isinstance(domain_hint, DomainEnum):
        return DOMAIN_CATEGORY_MAP[domain_hint]
    try:
        return DOMAIN_CATEGORY_MAP[DomainEnum(domain_hint)]
    except ValueError:
        return str(domain_hint)


class SchemeScorer:
    """
    Lexical scorer cho một scheme.

    Matching là substring containment trên text đã normalize + lower-case + bỏ dấu,
    không stemming:
    - token_match   mỗi query token có trong full text
    - title_match   mỗi query token có trong name (title boost)
    - domain_match  domain hint trùng category của scheme
    - short_query_bonus  query <= SHORT_QUERY_MAX_TOKENS tokens và domain boost đã áp dụng
    """

    def __init__(self, weights: Optional[Dict[str, int]] = None, short_query_max_tokens: int = None):
        self.weights = dict(Config.SCORING_WEIGHTS)
        if weights:
            self.weights.update(weights)
        self.short_query_max_tokens = (
            Config.SHORT_QUERY_MAX_TOKENS if short_query_max_tokens is None else short_query_max_tokens
        )
        self._text_cache: Dict[str, Tuple[str, str]] = {}

    def match_texts(self, scheme: Scheme) -> Tuple[str, str]:
        """(full_text, title_text) đã normalize, cache theo scheme_id."""
        cached = self._text_cache.get(scheme.scheme_id)
        if cached is not None:
            return cached

        title_parts = [scheme.name_en, scheme.name_zh]
        full_parts = (
            title_parts
            + [scheme.summary_en, scheme.summary_zh]
            + list(scheme.keywords_en) + list(scheme.keywords_zh)
            + list(scheme.eligibility_en) + list(scheme.eligibility_zh)
            + list(scheme.how_to_apply_en) + list(scheme.how_to_apply_zh)
        )
        texts = (self._prepare(full_parts), self._prepare(title_parts))
        self._text_cache[scheme.scheme_id] = texts
        return texts

    @staticmethod
    def _prepare(parts: List[str]) -> str:
        return _norm_text(" ".join(TextNormalizer.normalize(p) for p in parts if p))

    def score_scheme(
        self,
        tokens: List[str],
        scheme: Scheme,
        domain_hint: Union[DomainEnum, str, None] = None,
    ) -> int:
        full_text, title_text = self.match_texts(scheme)
        score = 0

        for token in tokens:
            t = _strip_accents(token.casefold())
            if not t:
                continue
            if t in full_text:
                score += self.weights["token_match"]
            if t in title_text:
                score += self.weights["title_match"]

        hint_category = category_for(domain_hint)
        if hint_category is not None and hint_category == scheme.category:
            score += self.weights["domain_match"]
            if len(tokens) <= self.short_query_max_tokens:
                score += self.weights["short_query_bonus"]

        return score
