"""
Chat pipeline orchestration: classify, retrieve and map, assemble
"""
from typing import Dict, Optional

import structlog

from emr_assistant.models.chat import ChatRequest, Classification, PromptPair, QuickHelpAction, QuickHelpRequest
from emr_assistant.services.classifier import QueryClassifier
from emr_assistant.services.config import Settings
from emr_assistant.services.knowledge_base import KnowledgeBaseStore
from emr_assistant.services.prompts import PromptAssembler
from emr_assistant.services.retrieval import KnowledgeRetriever
from emr_assistant.services.url_mapper import UrlMapper
from emr_assistant.utils.metrics import chat_request_counter, knowledge_base_size

logger = structlog.get_logger()

QUICK_HELP_PROMPTS: Dict[QuickHelpAction, str] = {
    QuickHelpAction.PAGE_SUMMARY: "In 2-3 sentences, explain what this page is for and who can access it.",
    QuickHelpAction.FORM_HELP: "List the key fields on this page and any important constraints users should know about.",
    QuickHelpAction.NEXT_STEPS: "What are the typical next actions a user would take after visiting this page?",
}


class ChatAssistant:
    """Turns a chat or quick help request into the prompt pair for the model"""

    def __init__(
        self,
        settings: Settings,
        knowledge_store: KnowledgeBaseStore,
        classifier: Optional[QueryClassifier] = None,
        retriever: Optional[KnowledgeRetriever] = None,
    ):
        self.settings = settings
        self.knowledge_store = knowledge_store
        self.classifier = classifier or QueryClassifier()
        self.retriever = retriever or KnowledgeRetriever()
        self.assembler = PromptAssembler(
            assistant_name=settings.ASSISTANT_NAME,
            generic_system_prompt=settings.generic_system_prompt,
            max_prompt_chars=settings.MAX_PROMPT_CHARS,
        )

    def load_knowledge(self) -> str:
        document = self.knowledge_store.load()
        knowledge_base_size.set(len(document))
        return document

    def build_chat_prompts(self, request: ChatRequest, base_url: str) -> PromptPair:
        classification = self.classifier.classify(request.message)
        chat_request_counter.labels(query_type=classification.query_type).inc()

        page_context = request.page_context
        logger.info(
            "Chat request classified",
            message_length=len(request.message),
            is_current_page_query=classification.is_current_page_query,
            is_navigation_query=classification.is_navigation_query,
            is_app_related=classification.is_app_related,
            has_page_context=page_context is not None,
            page_url=page_context.url if page_context else None,
            history_count=len(request.conversation_history),
        )

        document = self.load_knowledge()
        excerpt = ""
        url_map: Dict[str, str] = {}
        if classification.is_app_related:
            excerpt = self.retriever.retrieve(document, classification, page_context, request.message)
            url_map = self.url_map_for(classification, document, base_url)

        prompts = self.assembler.assemble(
            classification,
            excerpt,
            url_map,
            request.message,
            page_context,
            request.conversation_history,
        )

        logger.info(
            "Prompts assembled",
            knowledge_base_size=len(document),
            excerpt_length=len(excerpt),
            url_mappings=len(url_map),
            system_prompt_length=len(prompts.system_prompt),
            user_prompt_length=len(prompts.user_prompt),
        )
        return prompts

    @staticmethod
    def url_map_for(classification: Classification, document: str, base_url: str) -> Dict[str, str]:
        # Only navigation answers list URLs
        if not classification.is_navigation_query or not document:
            return {}
        return UrlMapper(base_url).build_url_map(document)

    def build_quick_help_prompts(self, request: QuickHelpRequest) -> PromptPair:
        excerpt = self.retriever.retrieve_for_page(self.load_knowledge(), request.url)

        system_prompt = (
            f"You are {self.settings.ASSISTANT_NAME}. "
            "Provide concise, actionable responses based on this context:\n\n"
            f"{excerpt}"
        )
        user_prompt = f"{QUICK_HELP_PROMPTS[request.action]}\n\nURL: {request.url}"

        logger.info(
            "Quick help prompts assembled",
            action=request.action.value,
            url=request.url,
            excerpt_length=len(excerpt),
        )
        return PromptPair(system_prompt=system_prompt, user_prompt=user_prompt)
