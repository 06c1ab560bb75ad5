from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from app.models.intent import Action, RequestContext
from app.models.schemas import ActionRequest, AgentResponse, PromptRequest
from app.services.agent import RecruitmentAgent, get_agent
from app.services.chat_history import ChatHistoryRepository
from app.services.matcher import find_candidate
from app.utils.exceptions import ExceptionContext, RecruitAgentError, map_to_http_exception
from app.utils.logging_config import get_logger, PerformanceMonitor

router = APIRouter()
logger = get_logger(__name__)


def get_chat_history(agent: RecruitmentAgent = Depends(get_agent)) -> ChatHistoryRepository:
    if agent.chat_history is None:
        raise HTTPException(status_code=503, detail="Chat history storage is not configured")
    return agent.chat_history


def _request_context(context: RequestContext, authorization: Optional[str]) -> RequestContext:
    """The body token wins; otherwise the raw Authorization header is forwarded"""
    if not context.token and authorization:
        context.token = authorization
    return context


@router.post("/process-prompt", response_model=AgentResponse)
async def process_prompt(payload: PromptRequest, request: Request,
                         authorization: Optional[str] = Header(None),
                         agent: RecruitmentAgent = Depends(get_agent)):
    """Resolve, route and (for send actions) dispatch one user prompt"""
    request_id = getattr(request.state, 'request_id', 'unknown')
    context = _request_context(payload.context, authorization)

    logger.info(
        "Processing prompt",
        extra={"request_id": request_id, "conversation_id": context.conversation_id}
    )

    with PerformanceMonitor("process_prompt_endpoint", logger, threshold_ms=20000):
        try:
            with ExceptionContext("process_prompt", logger, request_id=request_id):
                return await agent.process_prompt(payload.prompt, context)
        except RecruitAgentError as e:
            raise map_to_http_exception(e)


async def _run_action(action: Action, payload: ActionRequest, request: Request,
                      authorization: Optional[str], agent: RecruitmentAgent) -> AgentResponse:
    request_id = getattr(request.state, 'request_id', 'unknown')
    context = _request_context(payload.context, authorization)
    logger.info(f"Direct action {action.value}", extra={"request_id": request_id, "action": action.value})
    try:
        with ExceptionContext(f"direct_{action.value}", logger, request_id=request_id):
            return await agent.run_action(action, payload.parameters, payload.prompt, payload.language, context)
    except RecruitAgentError as e:
        raise map_to_http_exception(e)


@router.post("/send-message", response_model=AgentResponse)
async def send_message(payload: ActionRequest, request: Request, authorization: Optional[str] = Header(None),
                       agent: RecruitmentAgent = Depends(get_agent)):
    return await _run_action(Action.SEND_MESSAGE, payload, request, authorization, agent)


@router.post("/generate-questions", response_model=AgentResponse)
async def generate_questions(payload: ActionRequest, request: Request, authorization: Optional[str] = Header(None),
                             agent: RecruitmentAgent = Depends(get_agent)):
    return await _run_action(Action.GENERATE_QUESTIONS, payload, request, authorization, agent)


@router.post("/compare-candidates", response_model=AgentResponse)
async def compare_candidates(payload: ActionRequest, request: Request, authorization: Optional[str] = Header(None),
                             agent: RecruitmentAgent = Depends(get_agent)):
    return await _run_action(Action.COMPARE_CANDIDATES, payload, request, authorization, agent)


@router.post("/analyze-resume", response_model=AgentResponse)
async def analyze_resume(payload: ActionRequest, request: Request, authorization: Optional[str] = Header(None),
                         agent: RecruitmentAgent = Depends(get_agent)):
    return await _run_action(Action.ANALYZE_RESUME, payload, request, authorization, agent)


@router.post("/schedule-interview", response_model=AgentResponse)
async def schedule_interview(payload: ActionRequest, request: Request, authorization: Optional[str] = Header(None),
                             agent: RecruitmentAgent = Depends(get_agent)):
    return await _run_action(Action.SCHEDULE_INTERVIEW, payload, request, authorization, agent)


@router.post("/analyze-messages", response_model=AgentResponse)
async def analyze_messages(payload: ActionRequest, request: Request, authorization: Optional[str] = Header(None),
                           agent: RecruitmentAgent = Depends(get_agent)):
    return await _run_action(Action.ANALYZE_MESSAGES, payload, request, authorization, agent)


@router.get("/candidates")
async def list_candidates(request: Request,
                          token: Optional[str] = Query(None),
                          user_id: Optional[str] = Query(None, alias="userId"),
                          authorization: Optional[str] = Header(None),
                          agent: RecruitmentAgent = Depends(get_agent)):
    """All candidates in the merged directory"""
    request_id = getattr(request.state, 'request_id', 'unknown')
    with PerformanceMonitor("list_candidates", logger):
        candidates = await agent.directory.fetch_candidates(token or authorization, user_id)
    logger.info(f"Listed {len(candidates)} candidates", extra={"request_id": request_id})
    return {"success": True, "candidates": candidates, "count": len(candidates)}


@router.get("/candidates/{name}")
async def get_candidate(name: str,
                        token: Optional[str] = Query(None),
                        user_id: Optional[str] = Query(None, alias="userId"),
                        authorization: Optional[str] = Header(None),
                        agent: RecruitmentAgent = Depends(get_agent)):
    candidates = await agent.directory.fetch_candidates(token or authorization, user_id)
    try:
        candidate = find_candidate(name, candidates)
    except RecruitAgentError as e:
        raise map_to_http_exception(e)
    return {"success": True, "candidate": candidate}


@router.get("/conversations")
async def list_conversations(request: Request, repo: ChatHistoryRepository = Depends(get_chat_history)):
    """Chat history grouped by conversation id"""
    request_id = getattr(request.state, 'request_id', 'unknown')
    conversations = await repo.list_conversations()
    logger.info(
        f"Fetched {len(conversations)} conversations",
        extra={"request_id": request_id, "conversation_count": len(conversations)}
    )
    return {"success": True, "conversations": conversations, "count": len(conversations)}


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, repo: ChatHistoryRepository = Depends(get_chat_history)):
    messages = await repo.get_conversation(conversation_id)
    if not messages:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"success": True, "conversation_id": conversation_id, "messages": messages, "count": len(messages)}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, repo: ChatHistoryRepository = Depends(get_chat_history),
                              agent: RecruitmentAgent = Depends(get_agent)):
    deleted = await repo.delete_conversation(conversation_id)
    agent.memory.clear(conversation_id)
    return {"success": True, "conversation_id": conversation_id, "deleted": deleted}


@router.get("/cache/stats")
async def cache_stats(agent: RecruitmentAgent = Depends(get_agent)):
    return {"success": True, "cache": agent.directory.get_cache_stats(), "conversations": len(agent.memory)}


@router.post("/cache/clear")
async def clear_cache(agent: RecruitmentAgent = Depends(get_agent)):
    agent.directory.clear_cache()
    return {"success": True, "message": "Candidate cache cleared"}
