"""
Inbound reference replies: detection, parsing into ReferenceResponse records
and webhook payload extraction.
"""
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.models.references import ReferenceRating, ReferenceResponse
from app.services.storage import MessageStore, ReferenceStore
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

REFERENCE_KEYWORDS = (
    "referencia", "reference", "candidato", "candidate", "trabajo", "work", "empleo", "job",
    "recomendación", "recommendation", "evaluación", "evaluation", "desempeño", "performance",
    "supervisor", "colaborador", "colleague", "cliente", "client", "proyecto", "project",
    "empresa", "company", "puesto", "position", "responsabilidades", "responsibilities",
    "habilidades", "skills", "fortalezas", "strengths", "áreas de mejora", "areas for improvement",
    "recomendaría", "would recommend", "calificación", "rating", "puntuación", "score",
)

RATING_PATTERN = re.compile(r"\b(\d{1,2})\s*(?:/|de)\s*(10|5)\b")
YES_NO_PATTERN = re.compile(r"(?<!\w)(sí|si|yes|no)(?!\w)")
DURATION_PATTERN = re.compile(r"(\d+)\s*(años|año|years|year|meses|mes|months|month|semanas|semana|weeks|week)\b")


def is_reference_response(text: str) -> bool:
    lowered = (text or "").lower()
    if any(keyword in lowered for keyword in REFERENCE_KEYWORDS):
        return True
    return bool(RATING_PATTERN.search(lowered) or YES_NO_PATTERN.search(lowered))


def parse_reference_response(text: str) -> Dict[str, Any]:
    """Pull rating, recommendation, relationship and duration out of free text"""
    lowered = (text or "").lower()
    parsed: Dict[str, Any] = {
        "rating": ReferenceRating().dict(),
        "willingness_to_recommend": "unknown",
        "relationship": "Unknown",
        "duration": "Unknown",
        "additional_comments": text or "",
    }

    for match in RATING_PATTERN.finditer(lowered):
        value, scale = int(match.group(1)), int(match.group(2))
        if scale == 5 and 0 < value <= 5:
            value *= 2
        if 0 < value <= 10:
            parsed["rating"]["overall"] = value
            break

    words = set(re.findall(r"[\wáéíóúñ]+", lowered))
    if words & {"sí", "si", "yes"}:
        parsed["willingness_to_recommend"] = "yes"
    elif "no" in words:
        parsed["willingness_to_recommend"] = "no"
    elif "tal vez" in lowered or words & {"maybe", "quizás", "quizas"}:
        parsed["willingness_to_recommend"] = "maybe"

    if words & {"supervisor", "jefe", "manager"}:
        parsed["relationship"] = "supervisor"
    elif words & {"colaborador", "colleague", "compañero", "compañera"}:
        parsed["relationship"] = "colleague"
    elif words & {"cliente", "client"}:
        parsed["relationship"] = "client"

    duration = DURATION_PATTERN.search(lowered)
    if duration:
        parsed["duration"] = f"{duration.group(1)} {duration.group(2)}"

    length = len(text or "")
    if length > 200:
        parsed["response_quality"] = "detailed"
    elif length > 50:
        parsed["response_quality"] = "brief"
    else:
        parsed["response_quality"] = "incomplete"

    return parsed


def build_reference_response(message: Dict[str, Any]) -> ReferenceResponse:
    """Structured record for one inbound reference reply"""
    text = message.get("text") or message.get("message") or ""
    parsed = parse_reference_response(text)
    return ReferenceResponse(
        id=str(message.get("id") or f"ref_{int(time.time() * 1000)}"),
        timestamp=_to_iso(message.get("timestamp")),
        reference_phone=message.get("from"),
        reference_name=message.get("contact_name") or "Unknown",
        reference_for=message.get("reference_for"),
        original_message=text,
        **parsed,
    )


def _to_iso(raw: Any) -> str:
    if raw is None or raw == "":
        return datetime.now(timezone.utc).isoformat()
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc).isoformat()
    except (TypeError, ValueError):
        return str(raw)


def extract_webhook_message(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Normalize the Business API webhook shape and the simple {from, message} shape"""
    if payload.get("object") == "whatsapp_business_account" and payload.get("entry"):
        try:
            value = payload["entry"][0]["changes"][0]["value"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Webhook payload without entry/changes/value")
            return None
        messages = value.get("messages") or []
        if not messages:
            # status callbacks (delivered, read) carry no messages
            return None
        msg = messages[0]
        contact_name = "Unknown"
        contacts = value.get("contacts") or []
        if contacts and (contacts[0].get("profile") or {}).get("name"):
            contact_name = contacts[0]["profile"]["name"]
        return {
            "id": msg.get("id"),
            "from": msg.get("from"),
            "text": (msg.get("text") or {}).get("body", ""),
            "timestamp": msg.get("timestamp"),
            "contact_name": contact_name,
            "type": msg.get("type", "text"),
        }

    if payload.get("message") and payload.get("from"):
        return {
            "id": f"simple_{int(time.time() * 1000)}",
            "from": payload["from"],
            "text": payload["message"],
            "timestamp": int(time.time()),
            "contact_name": "Unknown",
            "type": "text",
        }
    return None


async def record_inbound(message: Dict[str, Any], message_store: MessageStore,
                         reference_store: ReferenceStore) -> Dict[str, Any]:
    """Log an inbound message; reference replies also go to the structured log"""
    text = message.get("text") or ""
    is_reference = is_reference_response(text)
    stored = await message_store.save({
        "id": message.get("id") or f"in_{int(time.time() * 1000)}",
        "from": message.get("from"),
        "message": text,
        "type": "incoming",
        "timestamp": _to_iso(message.get("timestamp")),
        "contact_name": message.get("contact_name") or "Unknown",
        "is_reference_response": is_reference,
    })
    logger.info(f"Inbound message from {message.get('from')} (reference: {is_reference})")

    if is_reference:
        response = build_reference_response(message)
        await reference_store.save(response.dict())
    return stored
