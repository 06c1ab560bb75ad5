"""
WhatsApp Business (Graph API) client
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

import requests

from app.services.storage import MessageStore, utc_now_iso
from app.utils.config import AgentSettings
from app.utils.exceptions import ConfigurationError, ExternalServiceError, StorageError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


def reference_template(template_name: str, language_code: str, candidate_name: str) -> Dict[str, Any]:
    """Template payload for the reference request: body {{name}} plus a flow button"""
    return {
        "name": template_name,
        "language": {"code": language_code, "policy": "deterministic"},
        "components": [
            {
                "type": "body",
                "parameters": [
                    {"type": "text", "text": candidate_name or "el candidato", "parameter_name": "name"}
                ],
            },
            {
                "type": "button",
                "sub_type": "flow",
                "index": "0",
                "parameters": [{"type": "action", "action": {}}],
            },
        ],
    }


class WhatsAppClient:
    """Sends text and template messages and records outgoing texts in the message log"""

    def __init__(self, access_token: Optional[str], phone_number_id: Optional[str],
                 api_version: str = "v21.0", timeout: float = 10.0,
                 message_store: Optional[MessageStore] = None,
                 session: Optional[requests.Session] = None):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout
        self.message_store = message_store
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: AgentSettings, message_store: Optional[MessageStore] = None) -> "WhatsAppClient":
        return cls(
            settings.whatsapp_access_token,
            settings.whatsapp_phone_number_id,
            api_version=settings.whatsapp_api_version,
            timeout=settings.whatsapp_timeout,
            message_store=message_store,
        )

    def ensure_configured(self) -> None:
        if not self.access_token:
            raise ConfigurationError("WhatsApp access token is not configured", config_key="WHATSAPP_ACCESS_TOKEN")
        if not self.phone_number_id:
            raise ConfigurationError("WhatsApp phone number id is not configured", config_key="WHATSAPP_PHONE_NUMBER_ID")

    def _post_sync(self, endpoint: str, data: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{GRAPH_API_BASE}/{self.api_version}/{self.phone_number_id}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            resp = self.session.post(url, json=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError(f"WhatsApp request failed: {e}", service_name="whatsapp", cause=e)

        if not 200 <= resp.status_code < 300:
            try:
                error = resp.json().get("error", {}).get("message") or resp.text
            except ValueError:
                error = resp.text
            raise ExternalServiceError(
                f"WhatsApp API error {resp.status_code}: {error}",
                service_name="whatsapp",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ExternalServiceError("WhatsApp API returned invalid JSON", service_name="whatsapp", cause=e)

    async def make_request(self, endpoint: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_configured()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._post_sync, endpoint, data)

    @staticmethod
    def message_id(result: Dict[str, Any]) -> Optional[str]:
        messages: List[Dict[str, Any]] = result.get("messages") or []
        return messages[0].get("id") if messages else None

    async def send_text(self, to: str, body: str) -> Dict[str, Any]:
        result = await self.make_request("/messages", {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        })
        logger.info(f"WhatsApp text sent to {to}")
        if self.message_store is not None:
            try:
                await self.message_store.save({
                    "id": self.message_id(result) or f"out_{int(time.time() * 1000)}",
                    "from": self.phone_number_id,
                    "to": to,
                    "message": body,
                    "type": "outgoing",
                    "timestamp": utc_now_iso(),
                    "status": "sent",
                })
            except StorageError as e:
                logger.error(f"Sent message to {to} not logged: {e.message}")
        return result

    async def send_template(self, to: str, template: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.make_request("/messages", {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": template,
        })
        logger.info(f"WhatsApp template {template.get('name')} sent to {to}")
        return result
