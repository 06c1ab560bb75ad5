from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from app.models.dispatch import DispatchResult, TaskResult
from app.models.intent import IntentRecord, RequestContext


# -------- Agent --------
class PromptRequest(BaseModel):
    prompt: str
    context: RequestContext = Field(default_factory=RequestContext)

    @validator('prompt')
    def validate_prompt(cls, v):
        if not v or not v.strip():
            raise ValueError('Prompt cannot be empty')
        return v.strip()


class ActionRequest(BaseModel):
    """Runs one action directly, skipping intent resolution"""
    parameters: Dict[str, Any] = {}
    prompt: str = ""
    language: Optional[str] = None
    context: RequestContext = Field(default_factory=RequestContext)


class AgentResponseData(BaseModel):
    intent_data: IntentRecord
    result: TaskResult
    whatsapp_json: List[Dict[str, Any]] = []
    explanation: Optional[str] = None
    summary: str = ""
    dispatch_results: List[DispatchResult] = []
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AgentResponse(BaseModel):
    success: bool
    data: AgentResponseData


# -------- WhatsApp --------
class SendMessageRequest(BaseModel):
    to: str
    message: str

    @validator('message')
    def validate_message(cls, v):
        if not v or not v.strip():
            raise ValueError('Message cannot be empty')
        return v


class RetrieveMultipleRequest(BaseModel):
    phone_numbers: List[str]

    @validator('phone_numbers')
    def validate_numbers(cls, v):
        if not v:
            raise ValueError('At least one phone number is required')
        return v
