"""
Data models for chat functionality
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FormField(BaseModel):
    """Form field visible on the user's current page"""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    type: Optional[str] = None
    value: Optional[str] = None
    placeholder: Optional[str] = None


class PageContext(BaseModel):
    """Snapshot of the page the user is looking at"""
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
    title: Optional[str] = None
    html: Optional[str] = None
    text: Optional[str] = None
    form_data: Optional[List[FormField]] = None


class ConversationTurn(BaseModel):
    """One user/assistant exchange"""
    user: str = ""
    assistant: str = ""


class ChatRequest(BaseModel):
    """Chat request model"""
    message: str = Field(..., min_length=1, max_length=2000, description="User's question")
    page_context: Optional[PageContext] = Field(default=None, description="Page the user is on")
    conversation_history: List[ConversationTurn] = Field(
        default_factory=list,
        max_length=10,
        description="Most recent exchanges, oldest first"
    )

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v):
        """Trim surrounding whitespace so a blank message counts as empty"""
        return v.strip() if isinstance(v, str) else v


class QuickHelpAction(str, Enum):
    PAGE_SUMMARY = "page_summary"
    FORM_HELP = "form_help"
    NEXT_STEPS = "next_steps"


class QuickHelpRequest(BaseModel):
    """Non-streaming help request for a page"""
    url: str = Field(..., min_length=1)
    action: QuickHelpAction

    @field_validator("url", mode="before")
    @classmethod
    def strip_url(cls, v):
        return v.strip() if isinstance(v, str) else v


class QuickHelpResponse(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


class Classification(BaseModel):
    """What a chat message is asking about. Derived per request, never stored."""
    model_config = ConfigDict(frozen=True)

    is_current_page_query: bool = False
    is_navigation_query: bool = False
    is_app_related: bool = False
    entities: Tuple[str, ...] = ()
    actions: Tuple[str, ...] = ()
    context: Dict[str, str] = Field(default_factory=dict)

    @property
    def query_type(self) -> str:
        """Coarse label used for metrics"""
        if self.is_current_page_query:
            return "current_page"
        if self.is_navigation_query:
            return "navigation"
        if self.is_app_related:
            return "app"
        return "general"


class PromptPair(BaseModel):
    """System and user prompt handed to the model together"""
    system_prompt: str
    user_prompt: str
