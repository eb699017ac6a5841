"""
Query classification for chat messages.

The vocabularies are plain data. ``QueryClassifier`` only knows how to evaluate
them: substring phrase lists for the three boolean flags, and ``EntityRule``
entries for the entities that need disambiguation (an RBAC "user" is not a
patient; a "patient" can be a record or the logged-in role).
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from emr_assistant.models.chat import Classification

CURRENT_PAGE_PHRASES: Tuple[str, ...] = (
    "this page", "current page", "on this page", "this form",
    "these fields", "this button", "what do i see", "what am i looking at",
    "explain this page", "what is here", "what's on this page",
    "on this screen", "this screen", "what are these",
)

NAVIGATION_PHRASES: Tuple[str, ...] = (
    # where
    "where can i", "where do i", "where is", "where to", "where can you",
    "where do you", "where should i",
    # how
    "how can i", "how do i", "how to", "how can you", "how do you",
    "how should i", "how can we",
    # show / take / navigate
    "show me", "take me", "navigate", "go to", "open", "access",
    "find", "locate", "direct me",
    # page / link
    "what page", "which page", "page for", "link to", "url for", "link for",
    "page link", "give me the link", "can you show", "can you take",
    "can you direct", "what is the page", "what's the page",
    # instructions that usually end in a page
    "i want to", "i need to", "help me", "guide me to",
)

APP_KEYWORDS: Tuple[str, ...] = (
    "appointment", "patient", "practitioner", "schedule", "settings",
    "location", "service", "user", "role", "permission", "dashboard",
    "how do i", "how to", "where is", "where can i", "how can i",
    "create", "add", "update", "delete", "manage", "view", "edit",
    "new", "make", "build", "remove", "archive",
)

ENTITY_VOCABULARY: Tuple[str, ...] = (
    "patient", "practitioner", "appointment", "location", "service",
    "user", "role", "permission", "note", "encounter", "document",
    "invoice", "wallet", "consent", "invitation", "organization",
    "ledger", "attendance", "waiting_list", "intake",
)

ACTION_VOCABULARY: Tuple[str, ...] = (
    "create", "add", "new", "make", "build", "generate", "register",
    "update", "edit", "modify", "change", "alter",
    "delete", "remove", "archive", "destroy",
    "view", "see", "show", "display", "list", "access", "go to", "navigate to",
    "manage", "handle", "process", "administer", "configure",
    "invite", "send invitation",
)

ACTION_VARIATIONS: Dict[str, Tuple[str, ...]] = {
    "create": ("add", "new", "make", "generate", "register"),
    "add": ("create", "new"),
    "new": ("create", "add"),
    "view": ("see", "show", "display", "list", "access"),
    "edit": ("update", "modify", "change"),
}


@dataclass(frozen=True)
class EntityRule:
    """
    Emit ``entity`` when ``trigger`` matches and ``exclude`` (if any) does not.

    ``variants`` are tried in order; the first matching pattern decides the
    value stored under ``context_key``, otherwise ``default`` is used.
    """
    entity: str
    trigger: re.Pattern
    context_key: str
    default: str
    exclude: Optional[re.Pattern] = None
    variants: Tuple[Tuple[re.Pattern, str], ...] = field(default_factory=tuple)

    def apply(self, text: str) -> Optional[str]:
        """Context value for this entity, or None when the rule does not fire"""
        if not self.trigger.search(text):
            return None
        if self.exclude is not None and self.exclude.search(text):
            return None
        for pattern, value in self.variants:
            if pattern.search(text):
                return value
        return self.default


def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


ENTITY_RULES: Tuple[EntityRule, ...] = (
    EntityRule(
        entity="user",
        trigger=_rx(r"\b(user|users|staff|admin user|rbac|role assignment|staff member)\b"),
        exclude=_rx(r"\b(patient|practitioner|doctor|physician)\b"),
        context_key="user_type",
        default="rbac",
    ),
    EntityRule(
        entity="patient",
        trigger=_rx(r"\b(patient|patients|client|patient record|patient records)\b"),
        context_key="patient_type",
        variants=(
            (_rx(r"\b(create|add|edit|manage|list|view|record|data|database|intake)\b"), "record"),
            (_rx(r"\b(dashboard|portal|my|own)\b"), "role"),
        ),
        default="record",
    ),
    EntityRule(
        entity="practitioner",
        trigger=_rx(r"\b(practitioner|practitioners|doctor|doctors|physician|physicians|provider)\b"),
        context_key="practitioner_type",
        variants=(
            (_rx(r"\b(create|add|edit|manage|list|view|profile|settings|pricing|location|hours|invitation)\b"), "record"),
            (_rx(r"\b(dashboard|my|own|assigned|session)\b"), "role"),
        ),
        default="record",
    ),
)


def contains_any(text: str, phrases: Iterable[str]) -> bool:
    """True on the first phrase found in ``text`` (already lower-cased)"""
    return any(phrase in text for phrase in phrases)


def _unique(items: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return tuple(seen)


class QueryClassifier:
    """Classifies a chat message. Never raises; unknown input yields an empty classification."""

    def __init__(
        self,
        current_page_phrases: Sequence[str] = CURRENT_PAGE_PHRASES,
        navigation_phrases: Sequence[str] = NAVIGATION_PHRASES,
        app_keywords: Sequence[str] = APP_KEYWORDS,
        entity_vocabulary: Sequence[str] = ENTITY_VOCABULARY,
        action_vocabulary: Sequence[str] = ACTION_VOCABULARY,
        entity_rules: Sequence[EntityRule] = ENTITY_RULES,
        action_variations: Optional[Dict[str, Tuple[str, ...]]] = None,
    ):
        self.current_page_phrases = tuple(current_page_phrases)
        self.navigation_phrases = tuple(navigation_phrases)
        self.app_keywords = tuple(app_keywords)
        self.entity_vocabulary = tuple(entity_vocabulary)
        self.action_vocabulary = tuple(action_vocabulary)
        self.entity_rules = tuple(entity_rules)
        self.action_variations = action_variations if action_variations is not None else ACTION_VARIATIONS

    def is_current_page_query(self, message: str) -> bool:
        return contains_any(message.lower(), self.current_page_phrases)

    def is_navigation_query(self, message: str) -> bool:
        return contains_any(message.lower(), self.navigation_phrases)

    def has_app_keyword(self, message: str) -> bool:
        return contains_any(message.lower(), self.app_keywords)

    def extract_query_entities(self, message: str) -> Tuple[Tuple[str, ...], Tuple[str, ...], Dict[str, str]]:
        """
        Entities, actions and disambiguation context for ``message``.

        Entities and actions are de-duplicated in first-seen order. Actions are
        expanded with their synonyms from ``action_variations``.
        """
        text = message.lower()
        entities: List[str] = []
        context: Dict[str, str] = {}

        for rule in self.entity_rules:
            value = rule.apply(text)
            if value is not None:
                entities.append(rule.entity)
                context[rule.context_key] = value

        for entity in self.entity_vocabulary:
            if entity in text and entity not in entities:
                entities.append(entity)

        actions = [action for action in self.action_vocabulary if action in text]
        expanded = list(actions)
        for action in actions:
            expanded.extend(self.action_variations.get(action, ()))

        return _unique(entities), _unique(expanded), context

    def classify(self, message: str) -> Classification:
        is_current_page = self.is_current_page_query(message)
        is_navigation = self.is_navigation_query(message)
        is_app_related = is_current_page or is_navigation or self.has_app_keyword(message)
        entities, actions, context = self.extract_query_entities(message)

        return Classification(
            is_current_page_query=is_current_page,
            is_navigation_query=is_navigation,
            is_app_related=is_app_related,
            entities=entities,
            actions=actions,
            context=context,
        )
