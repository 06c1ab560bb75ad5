import pytest
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

from app.models.candidate import Candidate, Reference, ReferenceContact
from app.services.agent import RecruitmentAgent
from app.services.dispatcher import MessageDispatcher
from app.services.intent import KeywordPositionResolver, RuleBasedIntentResolver
from app.services.llm import LLMClient
from app.services.memory import ConversationMemory
from app.services.router import ActionRouter, RouteData
from app.services.storage import build_stores
from app.utils.exceptions import ConfigurationError, ExternalServiceError, ModelError


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class StubLLM(LLMClient):
    """Returns canned replies in order; raises ModelError when told to fail"""

    def __init__(self, replies: Optional[List[str]] = None, fail: bool = False):
        self.replies = list(replies or [])
        self.fail = fail
        self.prompts: List[str] = []

    async def generate(self, prompt, system=None, temperature=0.2, max_tokens=None):
        self.prompts.append(prompt)
        if self.fail:
            raise ModelError("model unavailable", model_name="stub")
        return self.replies.pop(0) if self.replies else "ok"


class RecordingWhatsAppClient:
    """Stands in for WhatsAppClient; records every send"""

    def __init__(self, configured: bool = True, failing_numbers=()):
        self.configured = configured
        self.failing_numbers = set(failing_numbers)
        self.sent: List[Dict] = []

    def ensure_configured(self):
        if not self.configured:
            raise ConfigurationError("WhatsApp access token is not configured", config_key="WHATSAPP_ACCESS_TOKEN")

    async def _send(self, to, payload):
        if to in self.failing_numbers:
            raise ExternalServiceError("WhatsApp API error 400: invalid recipient", service_name="whatsapp",
                                       status_code=400)
        self.sent.append({"to": to, **payload})
        return {"messages": [{"id": f"wamid.{len(self.sent)}"}]}

    async def send_text(self, to, body):
        return await self._send(to, {"type": "text", "body": body})

    async def send_template(self, to, template):
        return await self._send(to, {"type": "template", "template": template})

    @staticmethod
    def message_id(result):
        messages = result.get("messages") or []
        return messages[0].get("id") if messages else None


def make_candidate(id: str, name: str, phone: Optional[str] = None, position: str = "Desarrollador Full Stack",
                   references: Optional[List[Reference]] = None, **kwargs) -> Candidate:
    return Candidate(id=id, name=name, phone=phone, position=position, references=references or [], **kwargs)


@pytest.fixture
def candidates() -> List[Candidate]:
    return [
        make_candidate(
            "u1", "Carlos Gómez", "6123-4567",
            experience="5 años", skills=["Python", "React", "SQL", "Docker"], languages=["Inglés"],
            location="Panamá", availability="Presencial",
            references=[
                Reference(name="Laura Méndez", position="Gerente", company="Acme",
                          contact=ReferenceContact(phone="6555-0001")),
                Reference(name="Jorge Díaz", company="Beta", contact=ReferenceContact(phone=None)),
            ],
        ),
        make_candidate("u2", "Carlos Ruiz", "+507 6222-3333", position="Diseñador UX", skills=["Figma"]),
        make_candidate(
            "u3", "Ana López", "6333-4444", experience="2 años", skills=["Python"],
            references=[Reference(name="Marta Vega", contact=ReferenceContact(phone="6777-8888"))],
        ),
        make_candidate("u4", "Mariana Torres", "123"),
        make_candidate("u5", "Pedro Salas", None, position="Contador"),
    ]


@pytest.fixture
def stores(tmp_path):
    return build_stores(str(tmp_path))


@pytest.fixture
def route_data(candidates) -> RouteData:
    return RouteData(candidates=candidates)


@pytest.fixture
def router(stores) -> ActionRouter:
    message_store, reference_store = stores
    return ActionRouter(None, KeywordPositionResolver(), message_store, reference_store)


@pytest.fixture
def whatsapp() -> RecordingWhatsAppClient:
    return RecordingWhatsAppClient()


@pytest.fixture
def chat_history():
    history = MagicMock()
    history.recent = AsyncMock(return_value=[])
    history.save_turn = AsyncMock()
    history.list_conversations = AsyncMock(return_value=[])
    history.get_conversation = AsyncMock(return_value=[])
    history.delete_conversation = AsyncMock(return_value=0)
    return history


@pytest.fixture
def make_agent(candidates, stores, whatsapp, chat_history):
    """Agent over fakes: static directory, keyword rules, recording WhatsApp client"""
    message_store, reference_store = stores

    def factory(llm=None, client=None):
        directory = MagicMock()
        directory.fetch_candidates = AsyncMock(return_value=candidates)
        directory.get_cache_stats.return_value = {"size": 0, "entries": []}
        router = ActionRouter(None, KeywordPositionResolver(), message_store, reference_store)
        return RecruitmentAgent(
            RuleBasedIntentResolver(),
            router,
            directory,
            MessageDispatcher(client or whatsapp),
            ConversationMemory(),
            message_store,
            chat_history=chat_history,
            llm=llm,
        )

    return factory
