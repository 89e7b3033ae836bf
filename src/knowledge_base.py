import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Any

from schema import Scheme, EntryPoint, Contacts, DOMAIN_CATEGORY_MAP

logger = logging.getLogger(__name__)

KNOWN_CATEGORIES = set(DOMAIN_CATEGORY_MAP.values())


@dataclass(frozen=True)
class KnowledgeBase:
    """Schemes + entry points, load một lần, read-only, share giữa các session."""
    schemes: Tuple[Scheme, ...] = ()
    entry_points: Tuple[EntryPoint, ...] = ()
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.schemes and not self.entry_points

    def get_scheme(self, scheme_id: str) -> Optional[Scheme]:
        for s in self.schemes:
            if s.scheme_id == scheme_id:
                return s
        return None

    def entry_points_for(self, prefer_tag: Optional[str] = None) -> List[EntryPoint]:
        """Entry points theo thứ tự KB, các entry có `prefer_tag` được đưa lên đầu."""
        if not prefer_tag:
            return list(self.entry_points)
        return sorted(self.entry_points, key=lambda e: 0 if prefer_tag in e.tags else 1)


def _str_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def parse_scheme(raw: Dict[str, Any]) -> Scheme:
    scheme_id = raw.get("id") or raw.get("scheme_id")
    name_en = raw.get("name_en")
    category = raw.get("category")
    if not scheme_id or not name_en or not category:
        raise ValueError(f"scheme missing id/name_en/category: {raw.get('id')!r}")
    if category not in KNOWN_CATEGORIES:
        logger.warning(f"Scheme {scheme_id} has unknown category '{category}'")

    keywords = raw.get("keywords") or {}
    if isinstance(keywords, dict):
        keywords_en = _str_list(keywords.get("en"))
        keywords_zh = _str_list(keywords.get("zh"))
    else:
        keywords_en = _str_list(keywords)
        keywords_zh = []

    return Scheme(
        scheme_id=str(scheme_id),
        category=str(category),
        name_en=str(name_en),
        name_zh=raw.get("name_zh") or "",
        summary_en=raw.get("summary_en") or "",
        summary_zh=raw.get("summary_zh") or "",
        eligibility_en=_str_list(raw.get("eligibility_en")),
        eligibility_zh=_str_list(raw.get("eligibility_zh")),
        how_to_apply_en=_str_list(raw.get("how_to_apply_en")),
        how_to_apply_zh=_str_list(raw.get("how_to_apply_zh")),
        keywords_en=keywords_en,
        keywords_zh=keywords_zh,
        official_links=_str_list(raw.get("official_links")),
    )


def parse_entry_point(raw: Dict[str, Any]) -> EntryPoint:
    entry_id = raw.get("id") or raw.get("entry_id")
    name_en = raw.get("name_en")
    if not entry_id or not name_en:
        raise ValueError(f"entry point missing id/name_en: {raw.get('id')!r}")

    contacts = None
    raw_contacts = raw.get("contacts")
    if isinstance(raw_contacts, dict) and (raw_contacts.get("hotline") or raw_contacts.get("email")):
        contacts = Contacts(hotline=raw_contacts.get("hotline"), email=raw_contacts.get("email"))

    return EntryPoint(
        entry_id=str(entry_id),
        name_en=str(name_en),
        name_zh=raw.get("name_zh") or "",
        links=_str_list(raw.get("links")),
        contacts=contacts,
        tags=_str_list(raw.get("tags")) or ["general"],
    )


def build_knowledge_base(data: Dict[str, Any]) -> KnowledgeBase:
    """Dict `{meta, entry_points, schemes}` → KnowledgeBase. Record lỗi bị bỏ qua."""
    schemes = []
    seen = set()
    for raw in data.get("schemes") or []:
        try:
            scheme = parse_scheme(raw)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed scheme: {e}")
            continue
        if scheme.scheme_id in seen:
            logger.warning(f"Skipping duplicate scheme id: {scheme.scheme_id}")
            continue
        seen.add(scheme.scheme_id)
        schemes.append(scheme)

    entry_points = []
    for raw in data.get("entry_points") or []:
        try:
            entry_points.append(parse_entry_point(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed entry point: {e}")

    return KnowledgeBase(
        schemes=tuple(schemes),
        entry_points=tuple(entry_points),
        meta=dict(data.get("meta") or {}),
    )


def load_knowledge_base(path: str) -> KnowledgeBase:
    if not path or not os.path.exists(path):
        logger.warning(f"Knowledge base not found at: {path}. Using empty knowledge base.")
        return KnowledgeBase()

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid knowledge base JSON at {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Knowledge base at {path} must be a JSON object")

    kb = build_knowledge_base(data)
    logger.info(f"Loaded {len(kb.schemes)} schemes and {len(kb.entry_points)} entry points from {path}")
    return kb


def get_default_kb_path() -> str:
    """Get default path to sg_services_kb.json."""
    here = os.path.dirname(__file__)
    parent = os.path.dirname(here)
    return os.path.join(parent, "external_data", "sg_services_kb.json")
