"""
Label -> absolute URL table built from the knowledge base.

Routes with dynamic segments (``{id}``, ``[appointment_id]``) cannot be linked
directly, so they are mapped to their parent route and, where useful, carry a
navigation hint ("Go to patient list, select an item, then click Edit").
"""
import re
from typing import Any, Dict, List, Optional

import structlog

from emr_assistant.utils.json_extract import parse_embedded_json

logger = structlog.get_logger()

# Dynamic route -> nearest page that can actually be linked
PARENT_ROUTES: Dict[str, str] = {
    "/appointments/{id}/manage": "/appointments",
    "/appointments/{id}/manage-appointment": "/appointments",
    "/appointments/{id}/edit": "/appointments",
    "/appointments/{id}/session": "/appointments",
    "/appointments/{id}/ai-summary": "/appointments",
    "/appointments/{appointment}/manage": "/appointments",
    "/appointments/[appointment_id]/manage-appointment": "/appointments",
    "/appointments/{appointment}/session": "/appointments",
    "/appointments/{appointment}/ai-summary": "/appointments",
    "/patients/{id}": "/patients",
    "/patients/{id}/edit": "/patients",
    "/patients/{id}/edit-medical-history": "/patients",
    "/patients/{id}/invite": "/patients",
    "/patients/{patient}/edit": "/patients",
    "/patients/{patient}/edit-medical-history": "/patients",
    "/patients/{patient}/invite": "/patients",
    "/invoices/{id}": "/invoices",
    "/invoices/{id}/edit": "/invoices",
    "/invoices/{invoice}/transactions": "/invoices",
    "/invoices/{invoice}/create-transaction": "/invoices",
    "/practitioners/{id}": "/settings/practitioners/list",
    "/practitioners/{id}/edit": "/settings/practitioners/list",
    "/practitioners/{practitioner}/locations": "/settings/practitioners/list",
    "/practitioners/{practitioner}/services": "/settings/practitioners/list",
    "/encounters/{id}/documents": "/appointments",
    "/encounters/{encounter_id}/documents": "/appointments",
    "/wallet/{id}/recalculate": "/wallet",
    "/wallet/{wallet}/recalculate": "/wallet",
}

# First path segment -> name used in labels such as "create patient"
MODULE_NAMES: Dict[str, str] = {
    "patients": "patient",
    "practitioners": "practitioner",
    "appointments": "appointment",
    "invoices": "invoice",
    "notes": "note",
    "users": "user",
    "roles": "role",
    "services": "service",
    "locations": "location",
    "consents": "consent",
    "wallet": "wallet",
    "ledger": "ledger",
    "attendance": "attendance",
    "waiting-list": "waiting list",
    "intake": "intake",
}

STATIC_SEGMENTS = ("create", "new", "index", "list", "invite", "invitations")

BRACE_SEGMENT = re.compile(r"\{([^}]+)\}")
BRACKET_SEGMENT = re.compile(r"\[([^\]]+)\]")

URL_FIELD = re.compile(r'"url"\s*:\s*"([^"]+)"')
ACTION_URL_PAIR = re.compile(r'"action"\s*:\s*"([^"]+)".*?"url"\s*:\s*"([^"]+)"', re.DOTALL)

CREATE_WORDS = re.compile(r"\b(create|add|new|make|generate|register)\b")
EDIT_WORDS = re.compile(r"\b(edit|update|modify|change)\b")
VIEW_WORDS = re.compile(r"\b(view|show|see|display|list|index)\b")
USER_ACTION_VIEW_WORDS = re.compile(r"\b(view|show|see|display|list)\b")
MANAGE_WORDS = re.compile(r"\b(manage|handle|administer)\b")
INVITE_WORDS = re.compile(r"\b(invite|send invitation)\b")


def has_dynamic_segment(path: str) -> bool:
    return bool(BRACE_SEGMENT.search(path) or BRACKET_SEGMENT.search(path))


def _normalize_segments(path: str) -> str:
    """Rewrite ``[x]`` placeholders as ``{x}``"""
    return BRACKET_SEGMENT.sub(r"{\1}", path)


def _route_regex(pattern: str) -> re.Pattern:
    # A placeholder never stands in for a static page such as /practitioners/create
    wildcard = "(?!(?:" + "|".join(STATIC_SEGMENTS) + ")(?:/|$))[^/]+"
    body = BRACKET_SEGMENT.sub("\0", BRACE_SEGMENT.sub("\0", pattern))
    body = re.escape(body).replace("\0", wildcard)
    return re.compile(f"^{body}$")


_PARENT_ROUTE_PATTERNS = [(_route_regex(pattern), parent) for pattern, parent in PARENT_ROUTES.items()]


def clean_dynamic_url(url: str) -> str:
    """
    Map a route with placeholders to a linkable path.

    Lookup order: exact match in PARENT_ROUTES, match after normalizing
    placeholder syntax, match with placeholders treated as wildcards. Unknown
    dynamic routes fall back to their first path segment. Static paths only get
    their slashes tidied.
    """
    if url in PARENT_ROUTES:
        return PARENT_ROUTES[url]

    normalized = _normalize_segments(url)
    if normalized in PARENT_ROUTES:
        return PARENT_ROUTES[normalized]

    for regex, parent in _PARENT_ROUTE_PATTERNS:
        if regex.match(url):
            return parent

    if has_dynamic_segment(url):
        first = url.strip("/").split("/")[0]
        if has_dynamic_segment(first):
            return "/"
        if first:
            return f"/{first}"

    cleaned = BRACKET_SEGMENT.sub("", BRACE_SEGMENT.sub("", url))
    cleaned = re.sub(r"/+", "/", cleaned).rstrip("/")
    return cleaned or "/"


def determine_page_type(url: str) -> Optional[str]:
    """Kind of page a route leads to, judged from the raw path"""
    path = url.lower()

    if "/create" in path:
        return "create"
    if "/edit" in path:
        return "edit"
    if "/manage" in path:
        return "manage"
    if "/invite" in path:
        return "invite"
    if re.search(r"/\d+$", path):
        return "show"
    if "/invitations" in path:
        return "invitations"
    if "/index" in path or (re.match(r"^/[^/]+$", path) and "{" not in path):
        return "index"
    return None


def get_base_path(url: str) -> str:
    """Readable module name for the first segment of a route"""
    path = BRACKET_SEGMENT.sub("", BRACE_SEGMENT.sub("", url.lstrip("/")))
    base = path.split("/")[0]
    return MODULE_NAMES.get(base, base)


def get_navigation_context(url: str) -> str:
    """How a user reaches a dynamic route starting from its list page"""
    path = url.lower()
    base = get_base_path(url)

    if "/manage" in path or "manage-appointment" in path:
        return f"Go to {base} list, select an item, then click Manage"
    if "/edit" in path:
        return f"Go to {base} list, select an item, then click Edit"
    if "/session" in path:
        return "Go to appointments list, select an appointment, then click Start Session"
    if "/ai-summary" in path:
        return "Go to appointments list, select an appointment, then click AI Summary"
    if "/invite" in path:
        return f"Go to {base} list, select an item, then click Invite"
    if "/transactions" in path:
        return "Go to invoices list, select an invoice, then view Transactions"
    if "/documents" in path:
        return "Go to appointments list, select an appointment, then view Documents"
    if re.search(r"/\{[^}]+\}$", path) or re.search(r"/\[[^\]]+\]$", path):
        return f"Go to {base} list, then select an item to view details"
    return f"Go to {base} list, then select an item"


def extract_action_keywords(description: str, page_title: str) -> List[str]:
    """Action words implied by a page's description and title"""
    text = f"{description} {page_title}".lower()
    actions: List[str] = []

    if CREATE_WORDS.search(text):
        actions += ["create", "add"]
    if EDIT_WORDS.search(text):
        actions += ["edit", "update"]
    if VIEW_WORDS.search(text):
        actions += ["view", "list"]
    if MANAGE_WORDS.search(text):
        actions.append("manage")
    if INVITE_WORDS.search(text):
        actions.append("invite")

    return actions


class UrlMapper:
    """Builds the label -> absolute URL table for one request"""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def absolute_url(self, path: str) -> str:
        if not path:
            return ""
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def _link(self, url: str) -> str:
        return self.absolute_url(clean_dynamic_url(url))

    def build_url_map(self, document: str) -> Dict[str, str]:
        if not document or "{" not in document:
            return {}

        decoded = parse_embedded_json(document)
        if decoded is None:
            logger.info("Knowledge JSON not parseable, extracting URLs with regex")
            return self.extract_urls_with_regex(document)

        mappings: Dict[str, str] = {}
        for tenant_data in decoded.values():
            if not isinstance(tenant_data, dict) or not isinstance(tenant_data.get("knowledge"), dict):
                continue
            knowledge = tenant_data["knowledge"]

            self._map_where_to_do_what(knowledge.get("where_to_do_what"), mappings)

            navigation = knowledge.get("navigation")
            if isinstance(navigation, (dict, list)):
                self._map_navigation(navigation, mappings)

            for key, value in knowledge.items():
                if isinstance(key, str) and key.startswith("/") and isinstance(value, dict):
                    self._map_page(key, value, mappings)

        return mappings

    def _map_where_to_do_what(self, items: Any, mappings: Dict[str, str]) -> None:
        if not isinstance(items, list):
            return
        for item in items:
            if not isinstance(item, dict) or "action" not in item or "url" not in item:
                continue
            url = self._link(str(item["url"]))
            mappings[str(item["action"])] = url
            if item.get("where"):
                mappings[str(item["where"])] = url

    def _map_navigation(self, node: Any, mappings: Dict[str, str]) -> None:
        children = node.values() if isinstance(node, dict) else node
        for child in children:
            if isinstance(child, dict):
                if "url" in child and "label" in child:
                    mappings[str(child["label"])] = self._link(str(child["url"]))
                self._map_navigation(child, mappings)
            elif isinstance(child, list):
                self._map_navigation(child, mappings)

    def _map_page(self, path: str, page: Dict[str, Any], mappings: Dict[str, str]) -> None:
        url = self._link(path)
        title = str(page.get("page_title") or "")
        module = str(page.get("module") or "")
        description = str(page.get("description") or "")
        page_type = determine_page_type(path)
        base_path = get_base_path(path)

        if title:
            mappings[title] = url
            if page_type:
                mappings[f"{title} ({page_type})"] = url
                if module:
                    mappings[f"{module} {page_type}"] = url
            if has_dynamic_segment(path):
                mappings[f"{title} (navigate via)"] = f"{url} → {get_navigation_context(path)}"

        if description:
            mappings[description] = url

        if base_path:
            for action in extract_action_keywords(description, title):
                mappings[f"{action} {base_path}"] = url
                if module:
                    mappings[f"{action} {module}"] = url

        user_actions = page.get("user_actions")
        if isinstance(user_actions, list):
            for user_action in user_actions:
                text = str(user_action).lower()
                if CREATE_WORDS.search(text):
                    mappings[f"create {base_path}"] = url
                    mappings[f"add {base_path}"] = url
                elif EDIT_WORDS.search(text):
                    mappings[f"edit {base_path}"] = url
                    mappings[f"update {base_path}"] = url
                elif USER_ACTION_VIEW_WORDS.search(text):
                    mappings[f"view {base_path}"] = url
                    mappings[f"list {base_path}"] = url

    def extract_urls_with_regex(self, document: str) -> Dict[str, str]:
        """Best-effort mapping straight from the raw text when the JSON is broken"""
        mappings: Dict[str, str] = {}

        for url in URL_FIELD.findall(document):
            if url.startswith("/"):
                mappings[url] = self._link(url)

        for action, url in ACTION_URL_PAIR.findall(document):
            if url.startswith("/"):
                mappings[action] = self._link(url)

        return mappings
