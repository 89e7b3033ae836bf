import logging
from typing import List, Optional, Union

from schema import (
    Scheme,
    DomainEnum,
    ScoredScheme,
    RetrievalResult,
    Config,
)
from normalize_content import TextNormalizer
from ranking import SchemeScorer

logger = logging.getLogger(__name__)


class SchemeRetriever:
    """
    Score + rank toàn bộ knowledge base cho một (query, domain_id).

    Luôn trả về danh sách đầy đủ đã rank/filter; phân trang là việc của caller
    (xem `paginate`). Cùng (query, domain_id) → cùng thứ tự, nên "show more"
    không re-rank và không lặp lại entry.
    """

    def __init__(
        self,
        schemes: List[Scheme],
        scorer: Optional[SchemeScorer] = None,
        profile: str = None,
        threshold: Optional[int] = None,
        max_results: int = None,
    ):
        self.schemes = list(schemes)
        self.scorer = scorer or SchemeScorer()
        self.profile = profile or Config.DEFAULT_PROFILE
        if threshold is None:
            threshold = Config.LOW_CONFIDENCE_THRESHOLDS.get(
                self.profile, Config.LOW_CONFIDENCE_THRESHOLDS[Config.DEFAULT_PROFILE]
            )
        self.threshold = threshold
        self.max_results = Config.MAX_RESULTS if max_results is None else max_results

    def retrieve_all(self, query: str, domain_id: Union[DomainEnum, str, None] = None) -> RetrievalResult:
        tokens = TextNormalizer.tokenize(query)

        scored = [
            ScoredScheme(scheme=s, score=self.scorer.score_scheme(tokens, s, domain_id), position=i)
            for i, s in enumerate(self.schemes)
        ]
        # sorted() là stable: tie giữ thứ tự gốc của knowledge base
        ranked = sorted((x for x in scored if x.score > 0), key=lambda x: -x.score)
        ranked = ranked[:self.max_results]

        top_score = ranked[0].score if ranked else 0
        low_confidence = top_score < self.threshold

        logger.info(
            f"Retrieved {len(ranked)} schemes: tokens={tokens}, domain={getattr(domain_id, 'value', domain_id)}, "
            f"top_score={top_score}, low_confidence={low_confidence}"
        )

        return RetrievalResult(
            query=query,
            domain_id=domain_id if isinstance(domain_id, DomainEnum) or domain_id is None else None,
            tokens=tokens,
            items=ranked,
            top_score=top_score,
            low_confidence=low_confidence,
        )


def paginate(items: List, offset: int, page_size: int) -> List:
    if page_size <= 0 or offset < 0:
        return []
    return items[offset:offset + page_size]


def has_more(total: int, offset: int, page_size: int) -> bool:
    return offset + page_size < total
