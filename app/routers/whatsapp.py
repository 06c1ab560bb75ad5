from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from app.models.references import ReferenceResponse
from app.models.schemas import RetrieveMultipleRequest, SendMessageRequest
from app.services.agent import RecruitmentAgent, get_agent
from app.services.matcher import normalize_phone
from app.services.references import extract_webhook_message, record_inbound
from app.services.summarizer import comprehensive_analysis, sort_chronologically, summarize_conversation
from app.utils.config import AgentSettings, get_settings
from app.utils.exceptions import RecruitAgentError, ValidationError, map_to_http_exception
from app.utils.logging_config import get_logger

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])
logger = get_logger(__name__)


@router.post("/send")
async def send_message(payload: SendMessageRequest, request: Request,
                       agent: RecruitmentAgent = Depends(get_agent),
                       settings: AgentSettings = Depends(get_settings)):
    """Send one text message outside the agent pipeline"""
    request_id = getattr(request.state, 'request_id', 'unknown')
    number = normalize_phone(payload.to, settings.default_country_code)
    try:
        if not number:
            raise ValidationError("Invalid phone number", field="to", value=payload.to)
        result = await agent.dispatcher.client.send_text(number, payload.message)
    except RecruitAgentError as e:
        raise map_to_http_exception(e)
    logger.info(f"Manual send to {number}", extra={"request_id": request_id})
    return {"success": True, "to": number, "message_id": agent.dispatcher.client.message_id(result)}


@router.get("/messages")
async def all_messages(agent: RecruitmentAgent = Depends(get_agent)):
    messages = await agent.message_store.all()
    return {"success": True, "messages": messages, "count": len(messages)}


@router.get("/retrieve-messages")
async def retrieve_messages(phone: str = Query(..., min_length=1), language: str = Query("es"),
                            agent: RecruitmentAgent = Depends(get_agent)):
    messages = sort_chronologically(await agent.message_store.by_number(phone))
    summary = summarize_conversation(messages, phone, language)
    return {
        "success": True,
        "phone_number": phone,
        "messages": messages,
        "count": len(messages),
        "summary": summary["text"],
    }


@router.post("/retrieve-multiple-messages")
async def retrieve_multiple_messages(payload: RetrieveMultipleRequest, language: str = Query("es"),
                                     agent: RecruitmentAgent = Depends(get_agent)):
    results = []
    for phone in payload.phone_numbers:
        messages = sort_chronologically(await agent.message_store.by_number(phone))
        results.append({"phone_number": phone, "messages": messages, "count": len(messages)})
    analysis = comprehensive_analysis(results, language)
    return {"success": True, "results": results, "comprehensive_analysis": analysis}


@router.get("/webhook")
async def verify_webhook(mode: str = Query(None, alias="hub.mode"),
                         token: str = Query(None, alias="hub.verify_token"),
                         challenge: str = Query(None, alias="hub.challenge"),
                         settings: AgentSettings = Depends(get_settings)):
    """Meta subscription handshake"""
    if mode == "subscribe" and settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("Webhook verification failed")
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook")
async def receive_webhook(payload: Dict[str, Any], agent: RecruitmentAgent = Depends(get_agent)):
    message = extract_webhook_message(payload)
    if message is None:
        return {"success": True, "status": "ignored"}
    stored = await record_inbound(message, agent.message_store, agent.router.reference_store)
    return {
        "success": True,
        "status": "received",
        "message_id": stored.get("id"),
        "is_reference_response": stored.get("is_reference_response", False),
    }


@router.get("/references/structured")
async def structured_references(agent: RecruitmentAgent = Depends(get_agent)):
    responses = await agent.router.reference_store.structured()
    return {"success": True, "responses": responses, "count": len(responses)}


@router.post("/references/structured")
async def save_structured_reference(payload: ReferenceResponse, agent: RecruitmentAgent = Depends(get_agent)):
    saved = await agent.router.reference_store.save(payload.dict())
    return {"success": True, "response": saved}


@router.get("/references/candidate/{name}")
async def candidate_references(name: str, phone: str = Query(None),
                               agent: RecruitmentAgent = Depends(get_agent)):
    responses = await agent.router.reference_store.for_candidate(name, phone)
    return {"success": True, "candidate": name, "responses": responses, "count": len(responses)}
