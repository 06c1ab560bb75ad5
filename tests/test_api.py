import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.agent import get_agent
from app.utils.config import AgentSettings, get_settings
from tests.conftest import RecordingWhatsAppClient


@pytest.fixture
def agent(make_agent):
    return make_agent()


@pytest.fixture
def client(agent):
    app.dependency_overrides[get_agent] = lambda: agent
    app.dependency_overrides[get_settings] = lambda: AgentSettings(whatsapp_verify_token="secret")
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_head_root(self, client):
        assert client.head("/").status_code == 200


class TestProcessPrompt:
    def test_prompt_is_processed(self, client, agent):
        response = client.post("/api/agent/process-prompt", json={
            "prompt": "Muéstrame los candidatos",
            "context": {"conversationId": "conv-1"},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["intent_data"]["action"] == "show_candidates"
        assert len(body["data"]["result"]["data"]["candidates"]) == 5
        assert agent.memory.get("conv-1") is not None

    def test_authorization_header_is_forwarded(self, client, agent):
        """Without a body token the raw header goes to the directory"""
        client.post("/api/agent/process-prompt", json={"prompt": "Muéstrame los candidatos"},
                    headers={"Authorization": "Bearer abc"})

        agent.directory.fetch_candidates.assert_awaited_with("Bearer abc", None)

    def test_empty_prompt_is_rejected(self, client):
        response = client.post("/api/agent/process-prompt", json={"prompt": "   "})
        assert response.status_code == 422

    def test_missing_whatsapp_credentials(self, make_agent):
        """Configuration errors surface as a server error"""
        agent = make_agent(client=RecordingWhatsAppClient(configured=False))
        app.dependency_overrides[get_agent] = lambda: agent
        try:
            response = TestClient(app).post("/api/agent/process-prompt", json={
                "prompt": "Envía un mensaje a Carlos Gómez diciendo hola",
            })
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["detail"]["error"]["error_code"] == "CONFIGURATION_ERROR"

    def test_direct_action_endpoint(self, client, whatsapp):
        response = client.post("/api/agent/send-message", json={
            "parameters": {"candidate_name": "Ana López", "message": "Hola Ana"},
            "language": "es",
        })

        assert response.status_code == 200
        assert response.json()["data"]["intent_data"]["action"] == "send_message"
        assert whatsapp.sent[0]["body"] == "Hola Ana"


class TestCandidates:
    def test_get_candidate(self, client):
        response = client.get("/api/agent/candidates/Ana López")
        assert response.status_code == 200
        assert response.json()["candidate"]["id"] == "u3"

    def test_ambiguous_candidate(self, client):
        assert client.get("/api/agent/candidates/Carlos").status_code == 409

    def test_unknown_candidate(self, client):
        assert client.get("/api/agent/candidates/Zoe").status_code == 404

    def test_cache_stats(self, client):
        response = client.get("/api/agent/cache/stats")
        assert response.status_code == 200
        assert response.json()["cache"]["size"] == 0


class TestConversations:
    def test_missing_conversation(self, client):
        assert client.get("/api/agent/conversations/nope").status_code == 404

    def test_delete_clears_memory(self, client, agent, chat_history):
        client.post("/api/agent/process-prompt", json={
            "prompt": "Muéstrame los candidatos",
            "context": {"conversationId": "conv-1"},
        })
        chat_history.delete_conversation.return_value = 2

        response = client.delete("/api/agent/conversations/conv-1")

        assert response.json()["deleted"] == 2
        assert agent.memory.get("conv-1") is None


class TestWhatsAppRoutes:
    def test_webhook_verification(self, client):
        response = client.get("/api/agent/whatsapp/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "secret", "hub.challenge": "12345",
        })
        assert response.status_code == 200
        assert response.text == "12345"

    def test_webhook_verification_rejects_wrong_token(self, client):
        response = client.get("/api/agent/whatsapp/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345",
        })
        assert response.status_code == 403

    def test_inbound_reference_reply(self, client):
        """Reference replies are logged and parsed"""
        response = client.post("/api/agent/whatsapp/webhook", json={
            "from": "50767778888", "message": "Fui su supervisor, le doy 9/10",
        })

        assert response.json()["status"] == "received"
        assert response.json()["is_reference_response"] is True
        structured = client.get("/api/agent/whatsapp/references/structured").json()
        assert structured["count"] == 1
        assert structured["responses"][0]["rating"]["overall"] == 9

    def test_status_callback_is_ignored(self, client):
        response = client.post("/api/agent/whatsapp/webhook", json={"object": "whatsapp_business_account",
                                                                      "entry": [{"changes": [{"value": {}}]}]})
        assert response.json()["status"] == "ignored"

    def test_manual_send(self, client, whatsapp):
        response = client.post("/api/agent/whatsapp/send", json={"to": "6123-4567", "message": "Hola"})

        assert response.status_code == 200
        assert response.json()["to"] == "+50761234567"
        assert whatsapp.sent[0]["to"] == "+50761234567"

    def test_manual_send_invalid_number(self, client):
        response = client.post("/api/agent/whatsapp/send", json={"to": "123", "message": "Hola"})
        assert response.status_code == 400

    def test_retrieve_messages(self, client, stores):
        response = client.post("/api/agent/whatsapp/webhook", json={"from": "50761234567", "message": "ok"})
        assert response.status_code == 200

        body = client.get("/api/agent/whatsapp/retrieve-messages", params={"phone": "6123-4567"}).json()

        assert body["count"] == 1
        assert "Total de mensajes: 1" in body["summary"]
