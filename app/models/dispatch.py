"""
Task results and outbound message models
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OutboundMessage(BaseModel):
    """One (recipient, message) pair produced by the router"""
    candidate: str
    number: Optional[str] = None
    message: str = ""
    kind: str = "text"  # "text" or "template"
    template: Optional[Dict[str, Any]] = None
    reference: Optional[str] = None

    def whatsapp_json(self) -> Dict[str, Any]:
        return {"candidate": self.candidate, "number": self.number, "message": self.message}


class DispatchResult(BaseModel):
    """Outcome of sending one OutboundMessage"""
    recipient: str
    phone: Optional[str] = None
    success: bool
    skipped: bool = False
    message_id: Optional[str] = None
    error: Optional[str] = None


class TaskResult(BaseModel):
    """Uniform handler output"""
    success: bool = True
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    explanation: Optional[str] = None
    dispatch: List[OutboundMessage] = Field(default_factory=list)

    @property
    def candidates(self) -> List[Any]:
        return self.data.get("candidates") or []
