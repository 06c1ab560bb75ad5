"""
Recruitment agent: one LangGraph pipeline per user turn.

detect_intent -> load_data -> route -> [analyze] -> [dispatch] -> remember

The whole turn runs under the conversation's lock so concurrent turns on the
same conversation id never interleave their context reads and writes.
"""
from functools import lru_cache
from typing import Any, Dict, List, Optional, TypedDict

from langgraph.graph import END, StateGraph
from pymongo.errors import PyMongoError

from app.helpers import formatting as fmt
from app.helpers.prompts import ANALYSIS_SYSTEM_PROMPT
from app.models.candidate import Candidate
from app.models.dispatch import DispatchResult, TaskResult
from app.models.intent import (
    DATA_ACTIONS,
    SEND_ACTIONS,
    Action,
    ConversationContext,
    IntentRecord,
    RequestContext,
)
from app.models.schemas import AgentResponse, AgentResponseData
from app.services.cache import TTLCache
from app.services.chat_history import SENDER_AI, SENDER_USER, ChatHistoryRepository
from app.services.directory import CandidateDirectory, DirectoryClient
from app.services.dispatcher import MessageDispatcher
from app.services.intent import (
    IntentResolver,
    build_intent_resolver,
    build_position_resolver,
    detect_language,
    normalize_intent,
)
from app.services.llm import LLMClient, build_llm
from app.services.memory import ConversationMemory
from app.services.router import ActionRouter, RouteData
from app.services.scoring import make_default_scorer
from app.services.storage import MessageStore, build_stores
from app.services.whatsapp import WhatsAppClient
from app.utils.config import AgentSettings, get_settings
from app.utils.exceptions import DatabaseError, ModelError, RateLimitError
from app.utils.logging_config import get_logger, PerformanceMonitor

logger = get_logger(__name__)

RECENT_MESSAGES = 10
RECENT_TURNS = 10
WHATSAPP_JSON_ACTIONS = (Action.SEND_MESSAGE, Action.GENERATE_QUESTIONS)


class TurnState(TypedDict, total=False):
    prompt: str
    request: RequestContext
    context: Optional[ConversationContext]
    intent: IntentRecord
    data: RouteData
    result: TaskResult
    dispatch_results: List[DispatchResult]


class RecruitmentAgent:
    def __init__(self, intent_resolver: IntentResolver, router: ActionRouter,
                 directory: CandidateDirectory, dispatcher: MessageDispatcher,
                 memory: ConversationMemory, message_store: MessageStore,
                 chat_history: Optional[ChatHistoryRepository] = None,
                 llm: Optional[LLMClient] = None):
        self.intent_resolver = intent_resolver
        self.router = router
        self.directory = directory
        self.dispatcher = dispatcher
        self.memory = memory
        self.message_store = message_store
        self.chat_history = chat_history
        self.llm = llm
        self.graph = self.build_graph()

    def build_graph(self):
        g = StateGraph(TurnState)
        g.add_node("detect_intent", self.node_detect_intent)
        g.add_node("load_data", self.node_load_data)
        g.add_node("route", self.node_route)
        g.add_node("analyze", self.node_analyze)
        g.add_node("dispatch", self.node_dispatch)
        g.add_node("remember", self.node_remember)
        g.set_entry_point("detect_intent")
        g.add_conditional_edges("detect_intent", self._after_intent, {"load_data": "load_data", "route": "route"})
        g.add_edge("load_data", "route")
        g.add_conditional_edges(
            "route",
            self._after_route,
            {"analyze": "analyze", "dispatch": "dispatch", "remember": "remember"},
        )
        g.add_conditional_edges("analyze", self._after_analyze, {"dispatch": "dispatch", "remember": "remember"})
        g.add_edge("dispatch", "remember")
        g.add_edge("remember", END)
        return g.compile()

    # Edges

    @staticmethod
    def _after_intent(state: TurnState) -> str:
        return "load_data" if state["intent"].action in DATA_ACTIONS else "route"

    @staticmethod
    def _wants_dispatch(state: TurnState) -> bool:
        result = state["result"]
        return state["intent"].action in SEND_ACTIONS and result.success and bool(result.dispatch)

    def _after_route(self, state: TurnState) -> str:
        if state["result"].data.get("needs_analysis"):
            return "analyze"
        return self._after_analyze(state)

    def _after_analyze(self, state: TurnState) -> str:
        return "dispatch" if self._wants_dispatch(state) else "remember"

    # Nodes

    async def node_detect_intent(self, state: TurnState) -> Dict[str, Any]:
        request = state["request"]
        context = self.memory.get(request.conversation_id)
        if state.get("intent") is not None:
            return {"context": context, "intent": normalize_intent(state["intent"])}
        with PerformanceMonitor("detect_intent", logger):
            intent = await self.intent_resolver.resolve(state["prompt"], context)
        intent = normalize_intent(intent)
        logger.info(
            f"Intent: {intent.action.value} ({intent.reasoning})",
            extra={"conversation_id": request.conversation_id, "action": intent.action.value},
        )
        return {"context": context, "intent": intent}

    async def node_load_data(self, state: TurnState) -> Dict[str, Any]:
        request = state["request"]
        candidates = await self.directory.fetch_candidates(request.token, request.user_id)
        messages = await self.message_store.recent(RECENT_MESSAGES)
        turns = []
        if self.chat_history is not None and request.conversation_id:
            try:
                turns = await self.chat_history.recent(request.conversation_id, RECENT_TURNS)
            except PyMongoError as e:
                logger.warning(f"Could not load chat history: {e}", extra={"conversation_id": request.conversation_id})
        return {"data": RouteData(
            candidates=candidates,
            message_history=messages,
            chat_history=turns,
            token=request.token,
            user_id=request.user_id,
        )}

    async def node_route(self, state: TurnState) -> Dict[str, Any]:
        result = await self.router.route(state["intent"], state.get("context"), state.get("data") or RouteData())
        return {"result": result}

    async def node_analyze(self, state: TurnState) -> Dict[str, Any]:
        """Replace the analysis prompt with the LLM's answer, or the bare list"""
        result = state["result"]
        language = state["intent"].language
        prompt = result.data.pop("analysis_prompt", None)
        result.data["needs_analysis"] = False

        analysis = None
        if self.llm is not None and prompt:
            try:
                with PerformanceMonitor("candidate_analysis", logger, threshold_ms=15000):
                    analysis = (await self.llm.generate(prompt, system=ANALYSIS_SYSTEM_PROMPT,
                                                        temperature=0.3, max_tokens=1500)).strip()
            except (ModelError, RateLimitError) as e:
                logger.error(f"Candidate analysis failed: {e.message}")

        if analysis:
            result.data["message"] = analysis
            result.data["analysis"] = analysis
        else:
            listing = fmt.enumerate_candidates(
                [c for c in result.candidates if isinstance(c, Candidate)][:result.data.get("count") or None]
            )
            result.data["message"] = fmt.localize(
                language,
                f"Encontré un error al analizar los candidatos. Estos son los candidatos sin análisis:\n\n{listing}",
                f"I encountered an error while analyzing the candidates. Here are the candidates without analysis:\n\n{listing}",
            )
            result.error_code = "upstream_llm_error"
        return {"result": result}

    async def node_dispatch(self, state: TurnState) -> Dict[str, Any]:
        result = state["result"]
        outcomes = await self.dispatcher.send_batch(result.dispatch)
        sent = sum(1 for o in outcomes if o.success)
        result.data["sent_count"] = sent
        result.data["failed_count"] = len(outcomes) - sent
        failed = [o for o in outcomes if not o.success]
        if failed:
            result.explanation = (result.explanation or "") + fmt.localize(
                state["intent"].language,
                f"\n\n⚠️ {len(failed)} envíos fallaron: " + ", ".join(o.recipient for o in failed),
                f"\n\n⚠️ {len(failed)} sends failed: " + ", ".join(o.recipient for o in failed),
            )
        return {"result": result, "dispatch_results": outcomes}

    async def node_remember(self, state: TurnState) -> Dict[str, Any]:
        """Context is written only from a successful result that names candidates"""
        request = state["request"]
        intent = state["intent"]
        result = state["result"]
        candidates = [c for c in result.candidates if isinstance(c, Candidate)]
        if result.success and candidates:
            self.memory.save(request.conversation_id, ConversationContext(
                last_action=intent.action,
                last_intent=intent.intent,
                last_prompt=intent.original_prompt,
                job_position=result.data.get("job_position") or intent.param("job_position"),
                candidates=candidates,
            ))
        return {}

    # Entry points

    async def _run(self, state: TurnState) -> AgentResponse:
        request = state["request"]
        async with self.memory.lock_for(request.conversation_id):
            with PerformanceMonitor("process_prompt", logger, threshold_ms=20000):
                final = await self.graph.ainvoke(state)

        intent: IntentRecord = final["intent"]
        result: TaskResult = final["result"]
        whatsapp_json = []
        if intent.action in WHATSAPP_JSON_ACTIONS:
            whatsapp_json = [m.whatsapp_json() for m in result.dispatch]
        summary = fmt.action_summary(intent.action, result)
        response = AgentResponse(success=result.success, data=AgentResponseData(
            intent_data=intent,
            result=result,
            whatsapp_json=whatsapp_json,
            explanation=result.explanation,
            summary=summary,
            dispatch_results=final.get("dispatch_results") or [],
        ))
        await self._save_turns(request, intent, result, summary)
        return response

    async def _save_turns(self, request: RequestContext, intent: IntentRecord,
                          result: TaskResult, summary: str) -> None:
        if self.chat_history is None or not request.conversation_id:
            return
        reply = result.data.get("message") if isinstance(result.data.get("message"), str) else None
        reply = reply or result.explanation or summary
        try:
            await self.chat_history.save_turn(request.conversation_id, SENDER_USER, intent.original_prompt)
            await self.chat_history.save_turn(request.conversation_id, SENDER_AI, reply,
                                              metadata={"action": intent.action.value, "success": result.success})
        except DatabaseError as e:
            logger.warning(f"Chat turn not persisted: {e.message}", extra={"conversation_id": request.conversation_id})

    async def process_prompt(self, prompt: str, request: Optional[RequestContext] = None) -> AgentResponse:
        return await self._run({"prompt": prompt, "request": request or RequestContext()})

    async def run_action(self, action: Action, parameters: Dict[str, Any], prompt: str = "",
                         language: Optional[str] = None,
                         request: Optional[RequestContext] = None) -> AgentResponse:
        """Execute one action with caller-supplied parameters, bypassing the resolver"""
        language = language or parameters.get("language") or detect_language(prompt)
        intent = IntentRecord(
            action=action,
            intent=prompt or action.value,
            reasoning="direct endpoint call",
            parameters=dict(parameters),
            language=language,
            original_prompt=prompt,
        )
        return await self._run({"prompt": prompt, "request": request or RequestContext(), "intent": intent})


def build_agent(settings: AgentSettings, chat_history: Optional[ChatHistoryRepository] = None) -> RecruitmentAgent:
    llm = build_llm(settings)
    message_store, reference_store = build_stores(settings.data_dir)
    directory = CandidateDirectory(
        DirectoryClient(settings.user_api_url, settings.results_api_url, timeout=settings.directory_timeout),
        TTLCache(ttl=settings.directory_cache_ttl),
    )
    router = ActionRouter(
        llm,
        build_position_resolver(settings.intent_resolver, llm),
        message_store,
        reference_store,
        default_country_code=settings.default_country_code,
        candidate_list_cap=settings.candidate_list_cap,
        scorer=make_default_scorer(settings.home_location),
        template_name=settings.reference_template_name,
        template_language=settings.reference_template_language,
    )
    return RecruitmentAgent(
        build_intent_resolver(settings.intent_resolver, llm, settings.default_country_code),
        router,
        directory,
        MessageDispatcher(WhatsAppClient.from_settings(settings, message_store)),
        ConversationMemory(ttl=settings.context_ttl_seconds),
        message_store,
        chat_history=chat_history,
        llm=llm,
    )


@lru_cache()
def get_agent() -> RecruitmentAgent:
    from app.services.db import chat_history_coll
    return build_agent(get_settings(), ChatHistoryRepository(chat_history_coll))
