"""
Knowledge retrieval for chat prompts.

Picks a bounded excerpt of the knowledge document. Each retrieval mode is an
ordered list of strategies; a strategy returns an excerpt or None and the first
non-empty excerpt wins. The order is the fallback contract:

    current page:  page section -> URL keyword search -> document head (3,000)
    navigation:    document head (12,000)
    general:       structured JSON search -> line scoring
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import structlog

from emr_assistant.models.chat import Classification, PageContext
from emr_assistant.utils.json_extract import parse_embedded_json
from emr_assistant.utils.metrics import retrieval_strategy_counter

logger = structlog.get_logger()

MAX_EXCERPT_CHARS = 15000
NAVIGATION_EXCERPT_CHARS = 12000
PAGE_FALLBACK_CHARS = 3000
MIN_LINE_SEARCH_CHARS = 3000
JSON_SCAN_LIMIT = 50000
MAX_JSON_SECTIONS = 20
JSON_EXTRA_CONTEXT_THRESHOLD = 5000
JSON_EXTRA_CONTEXT_CHARS = 10000
MAX_PAGE_SECTION_LINES = 100
MAX_SCORED_LINES = 200
CONTEXT_WINDOW = 5


@dataclass(frozen=True)
class RetrievalStrategy:
    name: str
    run: Callable[[], Optional[str]]


def keyword_set(classification: Classification) -> List[str]:
    """Entities, actions and singular/plural variants of the entities, de-duplicated"""
    keywords: List[str] = list(classification.entities) + list(classification.actions)
    for entity in classification.entities:
        keywords.append(entity)
        keywords.append(entity[:-1] if entity.endswith("s") else f"{entity}s")
    return list(dict.fromkeys(keywords))


def _dumps(value: Any, pretty: bool = False) -> str:
    return json.dumps(value, ensure_ascii=False, indent=4 if pretty else None)


def _mentions_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


def search_knowledge_json(decoded: Dict[str, Any], keywords: Sequence[str]) -> str:
    """
    Collect structured sections that mention any keyword: ``where_to_do_what``
    entries, per-path page objects and the ``navigation`` tree
    """
    sections: List[str] = []

    for tenant_data in decoded.values():
        if not isinstance(tenant_data, dict) or not isinstance(tenant_data.get("knowledge"), dict):
            continue
        knowledge = tenant_data["knowledge"]

        items = knowledge.get("where_to_do_what")
        if isinstance(items, list):
            for item in items:
                item_text = _dumps(item)
                if _mentions_any(item_text, keywords):
                    sections.append(item_text)

        for key, value in knowledge.items():
            if isinstance(key, str) and key.startswith("/") and isinstance(value, dict):
                page_text = _dumps(value)
                if _mentions_any(page_text, keywords):
                    sections.append(page_text)

        navigation = knowledge.get("navigation")
        if isinstance(navigation, (dict, list)) and navigation:
            nav_text = _dumps(navigation)
            if _mentions_any(nav_text, keywords):
                sections.append(nav_text)

    if not sections:
        return ""

    result = "\n\n".join(sections[:MAX_JSON_SECTIONS])
    # Thin matches get the whole structure appended for extra context
    if len(result) < JSON_EXTRA_CONTEXT_THRESHOLD:
        result += "\n\n" + _dumps(decoded, pretty=True)[:JSON_EXTRA_CONTEXT_CHARS]

    return result[:MAX_EXCERPT_CHARS]


def search_knowledge_text(document: str, keywords: Sequence[str]) -> str:
    """
    Score every line by keyword occurrences, expand the best lines with
    surrounding context and reassemble them in document order
    """
    lines = document.split("\n")
    lowered_keywords = [keyword.lower() for keyword in keywords if keyword]
    scores: Dict[int, int] = {}

    for line_num, line in enumerate(lines):
        line_lower = line.lower()
        score = sum(line_lower.count(keyword) for keyword in lowered_keywords)
        if score > 0:
            scores[line_num] = score

    top_lines = sorted(scores, key=lambda n: scores[n], reverse=True)[:MAX_SCORED_LINES]

    selected = set()
    for line_num in top_lines:
        start = max(0, line_num - CONTEXT_WINDOW)
        end = min(len(lines), line_num + CONTEXT_WINDOW + 1)
        selected.update(range(start, end))

    result = "\n".join(lines[i] for i in sorted(selected))

    if len(result) < MIN_LINE_SEARCH_CHARS:
        return document[:MAX_EXCERPT_CHARS]
    return result[:MAX_EXCERPT_CHARS]


def extract_page_section(document: str, url_path: str) -> str:
    """
    Lines describing ``url_path``: capture starts at a line mentioning the path
    and ends once its braces balance out
    """
    if not url_path or url_path == "/":
        return ""

    captured: List[str] = []
    capturing = False
    depth = 0

    for line in document.split("\n"):
        if url_path in line:
            capturing = True
            depth = 0

        if not capturing:
            continue

        captured.append(line)
        depth += line.count("{") - line.count("}")
        if depth <= 0:
            capturing = False

        if len(captured) >= MAX_PAGE_SECTION_LINES:
            break

    return "\n".join(captured)


class KnowledgeRetriever:
    """Selects the knowledge excerpt that goes into the system prompt"""

    def retrieve(
        self,
        document: str,
        classification: Classification,
        page_context: Optional[PageContext] = None,
        message: Optional[str] = None,
    ) -> str:
        if not document:
            return ""

        page_url = page_context.url if page_context else None
        if classification.is_current_page_query and page_url:
            strategies = self.page_strategies(document, page_url)
        elif classification.is_navigation_query:
            strategies = [self._head("navigation_head", document, NAVIGATION_EXCERPT_CHARS)]
        else:
            strategies = self.general_strategies(document, classification)

        return self.run_strategies(strategies)

    def retrieve_for_page(self, document: str, page_url: str) -> str:
        """Excerpt for a page URL without a chat message (quick help)"""
        if not document:
            return ""
        return self.run_strategies(self.page_strategies(document, page_url))

    def page_strategies(self, document: str, page_url: str) -> List[RetrievalStrategy]:
        url_path = urlparse(page_url).path or page_url
        path_keywords = [part for part in url_path.strip("/").split("/") if len(part) > 2]

        return [
            RetrievalStrategy("page_section", lambda: extract_page_section(document, url_path)),
            RetrievalStrategy(
                "page_keywords",
                lambda: search_knowledge_text(document, path_keywords) if path_keywords else None,
            ),
            self._head("page_head", document, PAGE_FALLBACK_CHARS),
        ]

    def general_strategies(self, document: str, classification: Classification) -> List[RetrievalStrategy]:
        keywords = keyword_set(classification)
        if not keywords:
            return [self._head("general_head", document, MAX_EXCERPT_CHARS)]

        def structured() -> Optional[str]:
            decoded = parse_embedded_json(document, max_scan=JSON_SCAN_LIMIT)
            if decoded is None:
                return None
            return search_knowledge_json(decoded, keywords)

        return [
            RetrievalStrategy("json_sections", structured),
            RetrievalStrategy("line_scoring", lambda: search_knowledge_text(document, keywords)),
        ]

    @staticmethod
    def _head(name: str, document: str, limit: int) -> RetrievalStrategy:
        return RetrievalStrategy(name, lambda: document[:limit])

    @staticmethod
    def run_strategies(strategies: Sequence[RetrievalStrategy]) -> str:
        for strategy in strategies:
            excerpt = strategy.run()
            if excerpt:
                retrieval_strategy_counter.labels(strategy=strategy.name).inc()
                logger.debug("Knowledge excerpt selected", strategy=strategy.name, excerpt_length=len(excerpt))
                return excerpt
        return ""
