"""
Intent and conversation context models
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.models.candidate import Candidate


class Action(str, Enum):
    """Closed vocabulary of things the agent can do"""
    SEND_MESSAGE = "send_message"
    SEND_REFERENCE_MESSAGE = "send_reference_message"
    SEND_DIRECT_REFERENCE_MESSAGE = "send_direct_reference_message"
    RECEIVE_REFERENCE_MESSAGE = "receive_reference_message"
    PROVIDE_INFO = "provide_info"
    ANALYZE_MESSAGES = "analyze_messages"
    RETRIEVE_MESSAGES = "retrieve_messages"
    RETRIEVE_REFERENCE_RESPONSES = "retrieve_reference_responses"
    SHOW_CANDIDATES = "show_candidates"
    SHOW_POSITIONS = "show_positions"
    SHOW_REFERENCES = "show_references"
    GENERATE_QUESTIONS = "generate_questions"
    COMPARE_CANDIDATES = "compare_candidates"
    ANALYZE_RESUME = "analyze_resume"
    SCHEDULE_INTERVIEW = "schedule_interview"
    ANALYZE_AIHISTORY = "analyze_aihistory"
    GENERAL_CHAT = "general_chat"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["Action"]:
        if not raw:
            return None
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None


# Actions whose handlers need the candidate directory and logs loaded
DATA_ACTIONS = frozenset({
    Action.SEND_MESSAGE,
    Action.ANALYZE_MESSAGES,
    Action.RETRIEVE_MESSAGES,
    Action.GENERATE_QUESTIONS,
    Action.COMPARE_CANDIDATES,
    Action.ANALYZE_RESUME,
    Action.SHOW_CANDIDATES,
    Action.SHOW_POSITIONS,
    Action.SHOW_REFERENCES,
    Action.PROVIDE_INFO,
    Action.SEND_REFERENCE_MESSAGE,
    Action.SCHEDULE_INTERVIEW,
    Action.GENERAL_CHAT,
    Action.ANALYZE_AIHISTORY,
})

# Actions whose results carry a dispatch batch
SEND_ACTIONS = frozenset({
    Action.SEND_MESSAGE,
    Action.GENERATE_QUESTIONS,
    Action.SEND_REFERENCE_MESSAGE,
    Action.SEND_DIRECT_REFERENCE_MESSAGE,
})


class IntentRecord(BaseModel):
    """Structured reading of one user turn"""
    action: Action = Action.GENERAL_CHAT
    intent: str = ""
    reasoning: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    language: str = "es"
    original_prompt: str = ""

    def param(self, key: str, default: Any = None) -> Any:
        value = self.parameters.get(key)
        return default if value in (None, "", []) else value

    def names_param(self, key: str) -> List[str]:
        """A list parameter that the LLM sometimes returns as a comma separated string"""
        value = self.parameters.get(key)
        if not value:
            return []
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return [str(v).strip() for v in value if str(v).strip()]

    @property
    def text(self) -> str:
        """Everything the user said, for phrase scanning"""
        return " ".join(t for t in (self.intent, self.original_prompt) if t)


class ConversationContext(BaseModel):
    """Short-term memory of the last successful turn in a conversation"""
    last_action: Optional[Action] = None
    last_intent: Optional[str] = None
    last_prompt: Optional[str] = None
    job_position: Optional[str] = None
    candidates: List[Candidate] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class RequestContext(BaseModel):
    """Caller supplied context for a prompt"""
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    token: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")

    class Config:
        populate_by_name = True
