"""
Action router: executes one IntentRecord against the loaded data.

Every Action has exactly one handler; the table is checked at construction.
Handlers raise RoutingError subclasses for input problems and the boundary
in `route` turns everything into a TaskResult. Send handlers never talk to
WhatsApp themselves, they return the batch in `TaskResult.dispatch`.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from app.helpers import formatting as fmt
from app.helpers.formatting import localize
from app.helpers.prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    BEST_CANDIDATE_PROMPT,
    CHAT_PROMPT,
    COMPARE_PROMPT,
    INTERVIEW_PROMPT,
    MESSAGE_PROMPT,
    MESSAGES_ANALYSIS_PROMPT,
    QUESTIONS_PROMPT,
    REFERENCE_MESSAGE_PROMPT,
    RESUME_PROMPT,
    TOP_CANDIDATES_PROMPT,
)
from app.models.candidate import Candidate, Reference
from app.models.dispatch import OutboundMessage, TaskResult
from app.models.intent import Action, ConversationContext, IntentRecord
from app.services.intent import PositionResolver, extract_count
from app.services.llm import LLMClient
from app.services.matcher import (
    distinct_positions,
    filter_by_position,
    filter_excluded,
    filter_references,
    find_all,
    find_candidate,
    find_reference,
    match_tier,
    mentioned_candidates,
    normalize_phone,
    extract_phone_numbers,
    same_phone,
)
from app.services.scoring import Scorer, rank_by_score, score_candidate
from app.services.storage import MessageStore, ReferenceStore
from app.services.summarizer import (
    analyze_reference_responses,
    comprehensive_analysis,
    sort_chronologically,
    summarize_conversation,
    summarize_reference_responses,
)
from app.services.whatsapp import reference_template
from app.utils.exceptions import (
    AmbiguousCandidateError,
    CandidateNotFoundError,
    ConfigurationError,
    MissingPhoneError,
    ModelError,
    NoDataError,
    RateLimitError,
    RecruitAgentError,
    RoutingError,
    SafetyBlockedError,
)
from app.utils.logging_config import get_logger, PerformanceMonitor

logger = get_logger(__name__)

CONTEXT_PRONOUNS = re.compile(r"\b(her|him|them|ella|ellas|ellos|él)\b", re.IGNORECASE)
TOP_PHRASES = re.compile(r"\b(top|best|mejor|mejores)\b", re.IGNORECASE)
JOB_QUESTION = re.compile(
    r"\b(job|jobs|position|positions|posici[oó]n|posiciones|puesto|puestos|vacantes?|most|which one|out of|cu[aá]ntos)\b",
    re.IGNORECASE,
)
INFO_NAME_PATTERNS = (
    re.compile(r"(?:n[uú]mero|tel[eé]fono|phone|number|informaci[oó]n|info|perfil|profile|datos|details)\s+"
               r"(?:de|del|of|for|about)\s+([^\?\.,!]+)", re.IGNORECASE),
)
HISTORY_KEYWORDS = ("recommend", "recomiend", "best", "mejor", "top", "analysis", "análisis", "candidate", "candidato")

DEFAULT_TOP_N = 3
DEFAULT_COMPARE_N = 3
COMPARE_POOL = 5
RESUME_POOL = 10

SAFETY_MESSAGE = {
    "es": "Por razones de seguridad, no puedo enviar mensajes a todos los candidatos. "
          "Especifica el nombre de un candidato o una posición de trabajo.",
    "en": "For safety reasons, I cannot send messages to all candidates. "
          "Please specify a specific candidate name or job position.",
}

Handler = Callable[[IntentRecord, Optional[ConversationContext], "RouteData"], Awaitable[TaskResult]]


@dataclass
class RouteData:
    """Everything a handler may read besides the intent and the context"""
    candidates: List[Candidate] = field(default_factory=list)
    message_history: List[Dict[str, Any]] = field(default_factory=list)
    chat_history: List[Dict[str, Any]] = field(default_factory=list)
    token: Optional[str] = None
    user_id: Optional[str] = None


def clarification(error: RoutingError, language: str) -> str:
    """User-facing wording for an input-resolution error"""
    if isinstance(error, CandidateNotFoundError):
        return localize(
            language,
            f'No pude encontrar un candidato llamado "{error.name}". '
            f"¿Podrías verificar la ortografía o proporcionar un nombre diferente?",
            f'I couldn\'t find a candidate named "{error.name}". '
            f"Could you check the spelling or give a different name?",
        )
    if isinstance(error, AmbiguousCandidateError):
        names = ", ".join(error.matches)
        return localize(
            language,
            f'Encontré varios candidatos que coinciden con "{error.name}": {names}. ¿A cuál te refieres?',
            f'Several candidates match "{error.name}": {names}. Which one do you mean?',
        )
    if isinstance(error, MissingPhoneError):
        return localize(
            language,
            f"No encontré un número de teléfono válido para {error.name}.",
            f"No valid phone number found for {error.name}.",
        )
    if isinstance(error, NoDataError):
        return localize(
            language,
            "No tengo acceso a los datos de candidatos en este momento. Esto podría deberse a "
            "problemas de autenticación o a que los datos no estén disponibles.",
            "I don't have access to candidate data at the moment. This could be due to "
            "authentication issues or the data not being available.",
        )
    if isinstance(error, SafetyBlockedError):
        return SAFETY_MESSAGE.get(language, SAFETY_MESSAGE["es"])
    return error.message


class ActionRouter:
    def __init__(self, llm: Optional[LLMClient], position_resolver: PositionResolver,
                 message_store: MessageStore, reference_store: ReferenceStore,
                 default_country_code: str = "507", candidate_list_cap: int = 60,
                 scorer: Scorer = score_candidate,
                 template_name: str = "referencia_laboral", template_language: str = "es"):
        self.llm = llm
        self.position_resolver = position_resolver
        self.message_store = message_store
        self.reference_store = reference_store
        self.default_country_code = default_country_code
        self.candidate_list_cap = candidate_list_cap
        self.scorer = scorer
        self.template_name = template_name
        self.template_language = template_language

        self.handlers: Dict[Action, Handler] = {
            Action.SEND_MESSAGE: self.handle_send_message,
            Action.SEND_REFERENCE_MESSAGE: self.handle_send_reference_message,
            Action.SEND_DIRECT_REFERENCE_MESSAGE: self.handle_send_direct_reference_message,
            Action.RECEIVE_REFERENCE_MESSAGE: self.handle_receive_reference_message,
            Action.PROVIDE_INFO: self.handle_provide_info,
            Action.ANALYZE_MESSAGES: self.handle_analyze_messages,
            Action.RETRIEVE_MESSAGES: self.handle_retrieve_messages,
            Action.RETRIEVE_REFERENCE_RESPONSES: self.handle_retrieve_reference_responses,
            Action.SHOW_CANDIDATES: self.handle_show_candidates,
            Action.SHOW_POSITIONS: self.handle_show_positions,
            Action.SHOW_REFERENCES: self.handle_show_references,
            Action.GENERATE_QUESTIONS: self.handle_generate_questions,
            Action.COMPARE_CANDIDATES: self.handle_compare_candidates,
            Action.ANALYZE_RESUME: self.handle_analyze_resume,
            Action.SCHEDULE_INTERVIEW: self.handle_schedule_interview,
            Action.ANALYZE_AIHISTORY: self.handle_analyze_aihistory,
            Action.GENERAL_CHAT: self.handle_general_chat,
        }
        missing = [a.value for a in Action if a not in self.handlers]
        if missing:
            raise ConfigurationError(f"No handler for actions: {', '.join(missing)}", config_key="handlers")

    async def route(self, intent: IntentRecord, context: Optional[ConversationContext] = None,
                    data: Optional[RouteData] = None) -> TaskResult:
        data = data or RouteData()
        language = intent.language
        log_extra = {"action": intent.action.value}
        logger.info(f"Routing {intent.action.value}", extra=log_extra)

        try:
            with PerformanceMonitor(f"route.{intent.action.value}", logger):
                result = await self.handlers[intent.action](intent, context, data)
        except SafetyBlockedError as e:
            logger.warning(f"Blocked {intent.action.value}: {e.message}", extra=log_extra)
            message = clarification(e, language)
            return TaskResult(success=False, error=message, error_code=e.error_code, explanation=message)
        except RoutingError as e:
            logger.info(f"Could not resolve {intent.action.value}: {e.message}", extra=log_extra)
            message = clarification(e, language)
            return TaskResult(
                success=True,
                error_code=e.error_code,
                data={"message": message, **e.details},
                explanation=message,
            )
        except ConfigurationError:
            raise
        except RecruitAgentError as e:
            logger.error(f"{intent.action.value} failed: {e.message}", extra=log_extra)
            return TaskResult(success=False, error=e.message, error_code=e.error_code)
        except Exception as e:
            logger.exception(f"Unexpected error in {intent.action.value}", extra=log_extra)
            return TaskResult(success=False, error=str(e), error_code="internal_error")

        if result.success and not result.explanation:
            result.explanation = fmt.action_summary(intent.action, result)
        return result

    # Shared helpers

    @staticmethod
    def _require_candidates(data: RouteData) -> List[Candidate]:
        if not data.candidates:
            raise NoDataError()
        return data.candidates

    @staticmethod
    def _refers_to_context(intent: IntentRecord, context: Optional[ConversationContext]) -> bool:
        return bool(context and context.candidates and CONTEXT_PRONOUNS.search(intent.original_prompt or ""))

    def _context_scope(self, context: ConversationContext, data: RouteData) -> List[Candidate]:
        """Remembered candidates as a bulk scope, refused when they span the whole directory"""
        directory = {c.id for c in self._require_candidates(data)}
        if directory <= {c.id for c in context.candidates}:
            raise SafetyBlockedError("Remembered candidates cover the whole directory")
        return list(context.candidates)

    def _phone(self, raw: Optional[str]) -> Optional[str]:
        return normalize_phone(raw, self.default_country_code)

    async def _ask_llm(self, prompt: str, system: Optional[str] = None, temperature: float = 0.3,
                       max_tokens: Optional[int] = None) -> Optional[str]:
        """LLM reply, or None when the model is missing or failing"""
        if self.llm is None:
            return None
        try:
            reply = await self.llm.generate(prompt, system=system, temperature=temperature, max_tokens=max_tokens)
        except (ModelError, RateLimitError) as e:
            logger.warning(f"LLM call failed, degrading: {e.message}")
            return None
        return reply.strip() or None

    @staticmethod
    def _recent_chat(data: RouteData, limit: int = 4) -> str:
        return "\n".join(f"{t.get('sender')}: {t.get('message')}" for t in data.chat_history[-limit:])

    async def _resolve_position(self, intent: IntentRecord, context: Optional[ConversationContext],
                                candidates: List[Candidate]) -> Optional[str]:
        """Explicit parameter, then the conversation context, then the position resolver"""
        position = intent.param("job_position")
        if position:
            return position
        if context and context.job_position:
            return context.job_position
        positions = [p for p, _ in distinct_positions(candidates)]
        if not positions:
            return None
        return await self.position_resolver.match_position(intent.original_prompt or intent.intent, positions)

    def _bulk_targets(self, intent: IntentRecord, context: Optional[ConversationContext],
                      data: RouteData) -> List[Candidate]:
        """Candidate set for a bulk operation; never the unfiltered directory"""
        names = intent.names_param("candidate_names")
        position = intent.param("job_position")
        if names:
            targets = find_all(names, self._require_candidates(data))
        elif position:
            targets = filter_by_position(self._require_candidates(data), position)
        elif self._refers_to_context(intent, context):
            targets = self._context_scope(context, data)
        else:
            raise SafetyBlockedError("Refusing to message every candidate without a filter")

        targets = filter_excluded(targets, intent.names_param("exclude_candidates"))
        if not targets:
            raise CandidateNotFoundError(", ".join(names) or position or "all")
        return targets

    async def _compose_message(self, intent: IntentRecord, recipient: str, data: RouteData,
                               phone: Optional[str] = None, candidate_name: Optional[str] = None) -> str:
        """Explicit message, else LLM-authored, else a fixed template"""
        explicit = intent.param("message")
        if explicit:
            return explicit

        language = intent.language
        if candidate_name:
            prompt = REFERENCE_MESSAGE_PROMPT.format(
                reference=recipient,
                candidate=candidate_name,
                language_name=fmt.language_name(language),
                instruction=intent.original_prompt,
            )
        else:
            recent = ""
            if phone:
                previous = [m for m in data.message_history if same_phone(m.get("to"), phone, self.default_country_code)
                            or same_phone(m.get("from"), phone, self.default_country_code)]
                if previous:
                    recent = f"Recent message: {previous[-1].get('message', '')}"
            prompt = MESSAGE_PROMPT.format(
                recipient=recipient,
                recent=recent,
                language_name=fmt.language_name(language),
                instruction=intent.original_prompt,
            )
        reply = await self._ask_llm(prompt, temperature=0.7, max_tokens=120)
        if reply:
            return reply

        first = recipient.split()[0] if recipient else ""
        if candidate_name:
            return localize(
                language,
                f"Hola {first}, te escribo porque {candidate_name} te indicó como referencia laboral. "
                f"¿Podrías compartir tu opinión sobre su desempeño?",
                f"Hi {first}, {candidate_name} listed you as a work reference. "
                f"Could you share your opinion about their performance?",
            )
        return localize(
            language,
            f"Hola {first}, te escribo para dar seguimiento a tu proceso de selección. ¿Tienes un momento para conversar?",
            f"Hi {first}, I'm following up on your application. Do you have a moment to talk?",
        )

    async def _questions(self, intent: IntentRecord, candidate: Candidate) -> List[str]:
        language = intent.language
        reply = await self._ask_llm(
            QUESTIONS_PROMPT.format(
                name=candidate.name,
                position=candidate.position,
                experience=candidate.experience or "N/A",
                language_name=fmt.language_name(language),
                instruction=intent.original_prompt,
            ),
            temperature=0.7,
            max_tokens=200,
        )
        if reply:
            questions = [re.sub(r"^\s*(?:\d+[\.\)]|[-•*])\s*", "", line).strip() for line in reply.splitlines()]
            questions = [q for q in questions if q]
            if questions:
                return questions[:3]
        if language == "en":
            return [
                "Could you tell me more about your most recent experience?",
                f"What motivates you to apply for the {candidate.position} position?",
                "What is your availability for an interview this week?",
            ]
        return [
            "¿Podrías contarme más sobre tu experiencia más reciente?",
            f"¿Qué te motiva a aplicar a la posición de {candidate.position}?",
            "¿Cuál es tu disponibilidad para una entrevista esta semana?",
        ]

    async def _text_batch(self, targets: List[Candidate],
                          body: Callable[[Candidate], Awaitable[str]]) -> Tuple[List[OutboundMessage], List[str]]:
        """One text message per target with a usable phone; the rest are skipped"""
        batch, skipped = [], []
        for candidate in targets:
            number = self._phone(candidate.phone)
            if not number:
                logger.warning(f"Skipping {candidate.name}: no valid phone number ({candidate.phone!r})")
                skipped.append(candidate.name)
                continue
            batch.append(OutboundMessage(candidate=candidate.name, number=number, message=await body(candidate)))
        return batch, skipped

    @staticmethod
    def _single_send(message: OutboundMessage, language: str, candidates: List[Candidate]) -> TaskResult:
        return TaskResult(
            data={"sent": message.whatsapp_json(), "candidates": candidates},
            explanation=fmt.single_send_explanation(message, language),
            dispatch=[message],
        )

    @staticmethod
    def _bulk_send(batch: List[OutboundMessage], skipped: List[str], language: str,
                   targets: List[Candidate]) -> TaskResult:
        if not batch:
            raise MissingPhoneError(", ".join(skipped))
        sent = {m.candidate for m in batch}
        return TaskResult(
            data={
                "messages": [m.whatsapp_json() for m in batch],
                "skipped": skipped,
                "candidates": [c for c in targets if c.name in sent],
            },
            explanation=fmt.bulk_send_explanation(batch, language) + fmt.skipped_note(skipped, language),
            dispatch=batch,
        )

    @staticmethod
    def _message(text: str, **extra) -> TaskResult:
        return TaskResult(data={"message": text, **extra})

    # Messaging

    async def handle_send_message(self, intent, context, data) -> TaskResult:
        language = intent.language
        name = intent.param("candidate_name")
        names = intent.names_param("candidate_names")
        position = intent.param("job_position")

        phone = intent.param("phone_number")
        if phone:
            number = self._phone(phone)
            if not number:
                raise MissingPhoneError(str(phone))
            body = await self._compose_message(intent, number, data, phone=number)
            message = OutboundMessage(candidate=f"Direct Message ({number})", number=number, message=body)
            return self._single_send(message, language, [])

        if intent.param("all_references"):
            return await self._send_to_all_references(intent, context, data)

        if name == "all" or names or (position and not name) or (not name and self._refers_to_context(intent, context)):
            targets = self._bulk_targets(intent, context, data)

            async def body(candidate: Candidate) -> str:
                return await self._compose_message(intent, candidate.name, data, phone=self._phone(candidate.phone))

            batch, skipped = await self._text_batch(targets, body)
            return self._bulk_send(batch, skipped, language, targets)

        candidates = self._require_candidates(data)

        reference_name = intent.param("reference_name")
        if reference_name:
            candidate, reference = self._locate_reference(reference_name, name, candidates)
            number = self._phone(reference.contact.phone)
            if not number:
                raise MissingPhoneError(reference.name)
            body = await self._compose_message(intent, reference.name, data, candidate_name=candidate.name)
            message = OutboundMessage(
                candidate=f"{reference.name} (Reference for {candidate.name})",
                number=number,
                message=body,
                reference=reference.name,
            )
            return self._single_send(message, language, [candidate])

        mentioned = filter_excluded(mentioned_candidates(intent.text, candidates),
                                    intent.names_param("exclude_candidates"))
        if len(mentioned) > 1:
            raise AmbiguousCandidateError(name or intent.original_prompt, [c.name for c in mentioned])

        candidate = mentioned[0] if mentioned else None
        fallback_note = ""
        if candidate is None and name:
            try:
                candidate = find_candidate(name, candidates)
            except CandidateNotFoundError:
                if not (context and context.candidates):
                    raise
                candidate = context.candidates[0]
                logger.info(f"'{name}' not in directory, using context candidate {candidate.name}")
                fallback_note = fmt.context_fallback_note(name, candidate.name, language)

        if candidate is None:
            return self._message(localize(
                language,
                "Por favor especifica el nombre del candidato al que quieres enviar el mensaje.",
                "Please specify a candidate name to send a message to.",
            ))

        number = self._phone(candidate.phone)
        if not number:
            raise MissingPhoneError(candidate.name)
        body = await self._compose_message(intent, candidate.name, data, phone=number)
        result = self._single_send(OutboundMessage(candidate=candidate.name, number=number, message=body),
                                   language, [candidate])
        result.explanation = fallback_note + result.explanation
        return result

    @staticmethod
    def _locate_reference(reference_name: str, candidate_name: Optional[str],
                          candidates: List[Candidate]) -> Tuple[Candidate, Reference]:
        if candidate_name and candidate_name != "all":
            candidate = find_candidate(candidate_name, candidates)
            for reference in candidate.references:
                if match_tier(reference_name, reference.name):
                    return candidate, reference
            raise CandidateNotFoundError(reference_name)
        found = find_reference(reference_name, candidates)
        if not found:
            raise CandidateNotFoundError(reference_name)
        return found

    def _reference_scope(self, intent: IntentRecord, context: Optional[ConversationContext],
                         data: RouteData) -> List[Candidate]:
        """Candidates whose references are addressed; needs an explicit scope"""
        names = intent.names_param("candidate_names")
        name = intent.param("candidate_name")
        position = intent.param("job_position")
        if names:
            scope = find_all(names, self._require_candidates(data))
        elif name and name != "all":
            scope = [find_candidate(name, self._require_candidates(data))]
        elif position:
            scope = filter_by_position(self._require_candidates(data), position)
        elif self._refers_to_context(intent, context):
            scope = self._context_scope(context, data)
        else:
            raise SafetyBlockedError("Refusing to message the references of every candidate")
        return filter_excluded(scope, intent.names_param("exclude_candidates"))

    def _scoped_references(self, intent: IntentRecord,
                           scope: List[Candidate]) -> List[Tuple[Candidate, Reference]]:
        excluded = intent.names_param("exclude_references")
        return [(c, r) for c in scope for r in filter_references(c.references, excluded)]

    def _no_references(self, language: str, scope: List[Candidate]) -> TaskResult:
        return self._message(
            localize(language,
                     "No se encontraron referencias para los candidatos especificados.",
                     "No references found for the specified candidates."),
            references=[],
            candidates=scope,
        )

    async def _send_to_all_references(self, intent, context, data) -> TaskResult:
        language = intent.language
        scope = self._reference_scope(intent, context, data)
        pairs = self._scoped_references(intent, scope)
        if not pairs:
            return self._no_references(language, scope)

        batch, skipped = [], []
        for candidate, reference in pairs:
            number = self._phone(reference.contact.phone)
            if not number:
                logger.warning(f"Skipping reference {reference.name} of {candidate.name}: no valid phone")
                skipped.append(reference.name)
                continue
            body = await self._compose_message(intent, reference.name, data, candidate_name=candidate.name)
            batch.append(OutboundMessage(
                candidate=f"{reference.name} (Reference for {candidate.name})",
                number=number,
                message=body,
                reference=reference.name,
            ))
        if not batch:
            raise MissingPhoneError(", ".join(skipped))
        return TaskResult(
            data={"messages": [m.whatsapp_json() for m in batch], "skipped": skipped, "candidates": scope},
            explanation=fmt.bulk_reference_explanation(len(batch), language) + fmt.skipped_note(skipped, language),
            dispatch=batch,
        )

    async def handle_generate_questions(self, intent, context, data) -> TaskResult:
        language = intent.language
        name = intent.param("candidate_name")
        names = intent.names_param("candidate_names")
        position = intent.param("job_position")

        if name == "all" or names or (position and not name) or (not name and self._refers_to_context(intent, context)):
            targets = self._bulk_targets(intent, context, data)
        else:
            candidates = self._require_candidates(data)
            mentioned = filter_excluded(mentioned_candidates(intent.text, candidates),
                                        intent.names_param("exclude_candidates"))
            if len(mentioned) > 1:
                targets = mentioned
            elif name:
                targets = [find_candidate(name, candidates)]
            elif mentioned:
                targets = mentioned
            elif context and context.candidates:
                targets = [context.candidates[0]]
            else:
                return self._message(localize(
                    language,
                    "¿Para qué candidato quieres generar las preguntas?",
                    "Which candidate should I write the questions for?",
                ))

        async def body(candidate: Candidate) -> str:
            questions = await self._questions(intent, candidate)
            return fmt.questions_message(questions, candidate.name, language)

        batch, skipped = await self._text_batch(targets, body)
        if len(targets) == 1 and batch:
            return self._single_send(batch[0], language, targets)
        return self._bulk_send(batch, skipped, language, targets)

    async def handle_send_reference_message(self, intent, context, data) -> TaskResult:
        language = intent.language
        scope = self._reference_scope(intent, context, data)
        pairs = self._scoped_references(intent, scope)
        if not pairs:
            return self._no_references(language, scope)

        batch, skipped = [], []
        for candidate, reference in pairs:
            number = self._phone(reference.contact.phone)
            if not number:
                logger.warning(f"Skipping reference {reference.name} of {candidate.name}: no valid phone")
                skipped.append(reference.name)
                continue
            batch.append(OutboundMessage(
                candidate=f"{reference.name} (Reference for {candidate.name})",
                number=number,
                message=f"[template {self.template_name}] {candidate.name}",
                kind="template",
                template=reference_template(self.template_name, self.template_language, candidate.name),
                reference=reference.name,
            ))
        if not batch:
            raise MissingPhoneError(", ".join(skipped))

        subject = scope[0].name if len(scope) == 1 else localize(language, f"{len(scope)} candidatos",
                                                                  f"{len(scope)} candidates")
        return TaskResult(
            data={
                "template": self.template_name,
                "messages": [m.whatsapp_json() for m in batch],
                "total_references": len(batch),
                "skipped": skipped,
                "candidates": scope,
            },
            explanation=fmt.reference_send_explanation(len(batch), subject, self.template_name, language)
            + fmt.skipped_note(skipped, language),
            dispatch=batch,
        )

    async def handle_send_direct_reference_message(self, intent, context, data) -> TaskResult:
        language = intent.language
        phone = intent.param("phone_number")
        number = self._phone(phone)
        if not number:
            raise MissingPhoneError(str(phone or "?"))
        subject = intent.param("reference_name") or "el candidato"
        message = OutboundMessage(
            candidate=f"Reference ({number})",
            number=number,
            message=f"[template {self.template_name}] {subject}",
            kind="template",
            template=reference_template(self.template_name, self.template_language, subject),
            reference=subject,
        )
        return TaskResult(
            data={"template": self.template_name, "number": number, "reference_name": subject},
            explanation=localize(language, "✅ Acción completada exitosamente.", "✅ Action completed successfully."),
            dispatch=[message],
        )

    async def handle_receive_reference_message(self, intent, context, data) -> TaskResult:
        language = intent.language
        name = intent.param("candidate_name")
        if not name:
            return self._message(localize(
                language,
                "¿De qué candidato quieres ver las respuestas de referencia?",
                "Which candidate's reference responses do you want to see?",
            ))
        phone = intent.param("phone_number")
        responses = await self.reference_store.for_candidate(name, phone)
        suffix_es = f" del número {phone}" if phone else ""
        suffix_en = f" from number {phone}" if phone else ""
        return TaskResult(
            data={"candidate": name, "phone_number": phone, "responses": responses, "count": len(responses)},
            explanation=localize(
                language,
                f"✅ Acción completada exitosamente. Se encontraron {len(responses)} respuestas de referencia "
                f"para {name}{suffix_es}.",
                f"✅ Action completed successfully. Found {len(responses)} reference responses for {name}{suffix_en}.",
            ),
        )

    # Directory views

    async def handle_provide_info(self, intent, context, data) -> TaskResult:
        candidates = self._require_candidates(data)
        name = intent.param("candidate_name")
        if not name or name == "all":
            mentioned = mentioned_candidates(intent.original_prompt, candidates)
            if mentioned:
                name = mentioned[0].name
            else:
                for pattern in INFO_NAME_PATTERNS:
                    match = pattern.search(intent.original_prompt or "")
                    if match:
                        name = match.group(1).strip()
                        break
        if not name or name == "all":
            return self._message(localize(
                intent.language,
                "¿De qué candidato necesitas la información?",
                "Which candidate do you need information about?",
            ))
        candidate = find_candidate(name, candidates)
        return TaskResult(data={
            "message": fmt.candidate_profile(candidate),
            "candidate": candidate,
            "candidate_name": candidate.name,
            "candidates": [candidate],
        })

    async def handle_show_positions(self, intent, context, data) -> TaskResult:
        counts = distinct_positions(self._require_candidates(data))
        unit = localize(intent.language, "candidatos", "candidates")
        listing = "\n".join(f"{position}: {count} {unit}" for position, count in counts)
        return self._message(
            localize(intent.language,
                     f"Aquí están las posiciones de trabajo disponibles:\n\n{listing}",
                     f"Here are the available job positions:\n\n{listing}"),
            positions=[p for p, _ in counts],
            position_counts=dict(counts),
        )

    async def handle_show_references(self, intent, context, data) -> TaskResult:
        language = intent.language
        candidates = self._require_candidates(data)
        name = intent.param("candidate_name")
        position = intent.param("job_position")

        if name and name != "all":
            candidate = find_candidate(name, candidates)
            return self._message(
                fmt.references_block(candidate, language),
                candidate=candidate,
                references=candidate.references,
                count=len(candidate.references),
                candidates=[candidate],
            )

        if position:
            in_position = filter_by_position(candidates, position)
            with_refs = [c for c in in_position if c.references]
            if not with_refs:
                return self._message(
                    localize(language,
                             f"No se encontraron referencias para los candidatos de la posición **{position}**.",
                             f"No references found for any candidates in the **{position}** position."),
                    references=[],
                    job_position=position,
                    count=0,
                )
            header = localize(language, f"Referencias de candidatos para **{position}**:",
                              f"References for **{position}** candidates:")
            blocks = "\n\n".join(fmt.references_block(c, language) for c in with_refs)
            return self._message(
                f"{header}\n\n{blocks}",
                candidates=with_refs,
                job_position=position,
                count=sum(len(c.references) for c in with_refs),
            )

        return self._message(localize(
            language,
            "Especifica el nombre de un candidato o una posición para mostrar sus referencias.",
            "Please specify a candidate name or job position to show references for.",
        ))

    def _list_message(self, shown: List[Candidate], total: int, header: str) -> str:
        lines = []
        for i, c in enumerate(shown, 1):
            skills = ", ".join(c.skills[:3]) + ("..." if len(c.skills) > 3 else "")
            lines.append(
                f"**{i}. {c.name}**\n"
                f"   Position: {c.position}\n"
                f"   Experience: {c.experience or 'Not specified'}\n"
                f"   Skills: {skills}\n"
                f"   Location: {c.location or 'Not specified'}\n"
                f"   Salary: {c.salary_expectation or 'Not specified'}"
            )
        message = f"{header}\n\n" + "\n\n".join(lines)
        if total > len(shown):
            message += f"\n\n*Showing {len(shown)} of {total} total candidates*"
        return message

    async def handle_show_candidates(self, intent, context, data) -> TaskResult:
        language = intent.language
        candidates = self._require_candidates(data)
        cap = self.candidate_list_cap
        prompt = intent.original_prompt or intent.intent
        count_param = intent.param("number_of_candidates")
        explicit_position = intent.param("job_position")

        wants_analysis = bool(TOP_PHRASES.search(prompt) or count_param) or \
            (intent.param("candidate_name") == "all" and explicit_position)
        if wants_analysis:
            position = await self._resolve_position(intent, context, candidates)
            if not position:
                return self._message(
                    localize(language,
                             "Necesito saber qué posición de trabajo estás preguntando. ¿Podrías especificar la posición?",
                             "I need to know which job position you are asking about. Could you specify it?"),
                    candidates=[],
                    count=0,
                )
            qualified = filter_by_position(candidates, position)[:cap]
            if not qualified:
                return self._message(
                    localize(language,
                             f"No pude encontrar candidatos calificados para la posición {position}.",
                             f"I couldn't find qualified candidates for the {position} position."),
                    candidates=[],
                    count=0,
                    job_position=position,
                )
            try:
                top_n = int(count_param) if count_param else (extract_count(prompt) or DEFAULT_TOP_N)
            except (TypeError, ValueError):
                top_n = DEFAULT_TOP_N
            analysis_prompt = TOP_CANDIDATES_PROMPT.format(
                count=len(qualified),
                position=position,
                top_n=top_n,
                language_name=fmt.language_name(language),
                candidates="\n".join(fmt.candidate_brief(c) for c in qualified),
                prompt=prompt,
            )
            return TaskResult(data={
                "message": localize(
                    language,
                    f"Analizaré los mejores {top_n} candidatos para {position} basándome en sus habilidades, "
                    f"experiencia, expectativas salariales y ajuste general.",
                    f"I'll analyze the best {top_n} candidates for {position} based on their skills, "
                    f"experience, salary expectations and overall fit.",
                ),
                "analysis_prompt": analysis_prompt,
                "needs_analysis": True,
                "job_position": position,
                "candidates": qualified,
                "count": top_n,
            })

        if explicit_position:
            matched = filter_by_position(candidates, explicit_position)
            resolved = explicit_position
            if not matched:
                positions = [p for p, _ in distinct_positions(candidates)]
                resolved = await self.position_resolver.match_position(explicit_position, positions)
                matched = [c for c in candidates if resolved and c.position == resolved]
            if not matched:
                available = [p for p, _ in distinct_positions(candidates)]
                return self._message(
                    localize(language,
                             f'No se encontraron candidatos para la posición "{explicit_position}". '
                             f"Posiciones disponibles: {', '.join(available)}",
                             f'No candidates found for the position "{explicit_position}". '
                             f"Available positions are: {', '.join(available)}"),
                    candidates=[],
                    job_position=explicit_position,
                    available_positions=available,
                )
            shown = matched[:cap]
            header = localize(language, f"Candidatos para {resolved}:", f"Candidates for {resolved}:")
            return self._message(
                self._list_message(shown, len(matched), header),
                candidates=shown,
                job_position=resolved,
                total_count=len(matched),
            )

        shown = candidates[:cap]
        header = localize(language, f"Aquí están tus {len(candidates)} candidatos:",
                          f"Here are your {len(candidates)} candidates:")
        return self._message(
            self._list_message(shown, len(candidates), header),
            candidates=shown,
            total_count=len(candidates),
        )

    # LLM narratives

    async def handle_compare_candidates(self, intent, context, data) -> TaskResult:
        language = intent.language
        candidates = self._require_candidates(data)
        position = intent.param("job_position")
        if not position and data.chat_history:
            positions = [p for p, _ in distinct_positions(candidates)]
            position = await self.position_resolver.match_position(
                f"{self._recent_chat(data)}\n{intent.original_prompt}", positions)

        pool = filter_by_position(candidates, position) if position else candidates[:COMPARE_POOL]
        if not pool:
            return TaskResult(data={
                "comparison": localize(language,
                                       "No encontré candidatos para comparar. Especifica una posición.",
                                       "No candidates found to compare. Please specify a job position."),
                "candidates": [],
            })

        try:
            limit = int(intent.param("number_of_candidates") or DEFAULT_COMPARE_N)
        except (TypeError, ValueError):
            limit = DEFAULT_COMPARE_N
        chosen = pool[:limit]
        comparison = await self._ask_llm(
            COMPARE_PROMPT.format(
                position=position or "N/A",
                language_name=fmt.language_name(language),
                candidates="\n".join(fmt.candidate_brief(c) for c in chosen),
            ),
            system=ANALYSIS_SYSTEM_PROMPT,
            max_tokens=700,
        )
        result = TaskResult(data={
            "comparison": comparison,
            "candidates": chosen,
            "candidates_analyzed": len(chosen),
            "job_position": position,
        })
        if comparison is None:
            listing = "\n".join(
                f"- {c.name}: {c.experience or 'N/A'} experience, Skills: {', '.join(c.skills) or 'None'}"
                for c in chosen
            )
            result.data["comparison"] = localize(
                language,
                f"No pude generar la comparación en este momento. Estos son los candidatos encontrados:\n\n{listing}",
                f"I'm having trouble comparing the candidates right now. Here are the candidates found:\n\n{listing}",
            )
            result.error_code = "upstream_llm_error"
        result.data["message"] = result.data["comparison"]
        return result

    async def handle_analyze_resume(self, intent, context, data) -> TaskResult:
        language = intent.language
        resume = intent.param("resume_text")
        if resume:
            analysis = await self._ask_llm(
                RESUME_PROMPT.format(language_name=fmt.language_name(language), resume=resume),
                system=ANALYSIS_SYSTEM_PROMPT,
                max_tokens=800,
            )
            result = TaskResult(data={"analysis": analysis, "resume_length": len(resume)})
            if analysis is None:
                result.data["analysis"] = localize(language,
                                                   "No pude analizar el currículum en este momento.",
                                                   "I couldn't analyze the resume right now.")
                result.error_code = "upstream_llm_error"
            result.data["message"] = result.data["analysis"]
            return result

        pool = self._require_candidates(data)[:RESUME_POOL]
        ranked = rank_by_score(pool, self.scorer)
        best, best_score = ranked[0]
        scored = "\n".join(f"{fmt.candidate_brief(c)} | score: {score:.0f}" for c, score in ranked)
        analysis = await self._ask_llm(
            BEST_CANDIDATE_PROMPT.format(language_name=fmt.language_name(language), candidates=scored),
            system=ANALYSIS_SYSTEM_PROMPT,
            max_tokens=800,
        )
        result = TaskResult(data={
            "analysis": analysis,
            "candidates": [c for c, _ in ranked],
            "candidates_analyzed": len(ranked),
            "best_candidate": best.name,
            "best_score": best_score,
        })
        if analysis is None:
            listing = "\n".join(f"{i}. {c.name} ({c.position}) - score {s:.0f}" for i, (c, s) in enumerate(ranked, 1))
            result.data["analysis"] = localize(
                language,
                f"El candidato con mejor puntaje es {best.name}.\n\n{listing}",
                f"The highest scoring candidate is {best.name}.\n\n{listing}",
            )
            result.error_code = "upstream_llm_error"
        result.data["message"] = result.data["analysis"]
        return result

    async def handle_schedule_interview(self, intent, context, data) -> TaskResult:
        language = intent.language
        name = intent.param("candidate_name")
        if name and name != "all":
            candidate = find_candidate(name, self._require_candidates(data))
        elif context and context.candidates:
            candidate = context.candidates[0]
        else:
            return self._message(localize(
                language,
                "¿Con qué candidato quieres programar la entrevista?",
                "Which candidate should I schedule the interview with?",
            ))

        details = intent.param("interview_details") or "N/A"
        plan = await self._ask_llm(
            INTERVIEW_PROMPT.format(
                language_name=fmt.language_name(language),
                candidate=fmt.candidate_brief(candidate),
                details=details,
            ),
            max_tokens=500,
        )
        result = TaskResult(data={"scheduled": True, "candidate": candidate.name, "details": plan,
                                  "candidates": [candidate]})
        if plan is None:
            skills = ", ".join(candidate.skills[:5]) or "N/A"
            result.data["details"] = localize(
                language,
                f"1. Formato: videollamada de 45 minutos\n2. Temas: experiencia ({candidate.experience or 'N/A'}), "
                f"habilidades ({skills})\n3. Preguntas sobre la posición {candidate.position}\n4. Disponibilidad y expectativas",
                f"1. Format: 45 minute video call\n2. Topics: experience ({candidate.experience or 'N/A'}), "
                f"skills ({skills})\n3. Questions about the {candidate.position} position\n4. Availability and expectations",
            )
            result.error_code = "upstream_llm_error"
        result.explanation = localize(language,
                                      f"Entrevista propuesta para {candidate.name}.\n\n{result.data['details']}",
                                      f"Interview scheduled for {candidate.name}.\n\n{result.data['details']}")
        return result

    async def handle_analyze_messages(self, intent, context, data) -> TaskResult:
        language = intent.language
        phone = intent.param("phone_number")
        name = intent.param("candidate_name")
        if not phone and name and name != "all":
            candidate = find_candidate(name, self._require_candidates(data))
            phone = candidate.phone
            if not self._phone(phone):
                raise MissingPhoneError(candidate.name)
        if not phone:
            return self._message(localize(
                language,
                "Necesito el número de teléfono o el nombre de la persona para analizar la conversación.",
                "I need the phone number or name of the person to analyze the conversation.",
            ))

        number = self._phone(phone) or phone
        messages = sort_chronologically(await self.message_store.by_number(number))
        summary = summarize_conversation(messages, number, language, name)
        insights = None
        if messages:
            listing = "\n".join(
                f"[{m.get('type', '?')}] {m.get('timestamp', '')}: {m.get('message') or m.get('text') or ''}"
                for m in messages[-30:]
            )
            insights = await self._ask_llm(
                MESSAGES_ANALYSIS_PROMPT.format(language_name=fmt.language_name(language), messages=listing),
                system=ANALYSIS_SYSTEM_PROMPT,
                max_tokens=600,
            )
        result = TaskResult(data={
            "analyzed": len(messages),
            "insights": insights or summary["text"],
            "summary": summary["text"],
            "phone_number": number,
        })
        if messages and insights is None:
            result.error_code = "upstream_llm_error"
        result.data["message"] = result.data["insights"]
        return result

    async def handle_analyze_aihistory(self, intent, context, data) -> TaskResult:
        language = intent.language
        history = data.chat_history
        if not history:
            return self._message(localize(
                language,
                "No tengo historial de conversación previo para analizar.",
                "I don't have any previous conversation history to analyze.",
            ))
        relevant = [
            turn for turn in history
            if turn.get("sender") == "ai" and any(k in (turn.get("message") or "").lower() for k in HISTORY_KEYWORDS)
        ]
        if relevant:
            last = relevant[-1]
            return self._message(
                localize(language,
                         f"Según nuestra conversación reciente, esto fue lo que recomendé:\n\n{last['message']}",
                         f"Based on our recent conversation, here's what I recommended:\n\n{last['message']}"),
                original_message=last["message"],
                timestamp=last.get("timestamp"),
            )
        users = sum(1 for t in history if t.get("sender") == "user")
        ais = sum(1 for t in history if t.get("sender") == "ai")
        return self._message(
            localize(language,
                     f"Nuestra conversación tiene {users} mensajes tuyos y {ais} respuestas mías, pero no "
                     f"encuentro recomendaciones de candidatos. ¿Quieres que analice candidatos?",
                     f"Our conversation has {users} user messages and {ais} AI responses, but I don't see "
                     f"any candidate recommendations. Would you like me to analyze candidates for you?"),
            summary={"user_messages": users, "ai_messages": ais},
        )

    async def handle_general_chat(self, intent, context, data) -> TaskResult:
        language = intent.language
        prompt = intent.original_prompt or intent.intent

        if JOB_QUESTION.search(prompt):
            candidates = self._require_candidates(data)
            counts = distinct_positions(candidates)
            position = None
            if data.chat_history:
                position = await self.position_resolver.match_position(
                    f"{self._recent_chat(data, 6)}\n{prompt}", [p for p, _ in counts])
            if position:
                found = dict(counts).get(position, 0)
                return self._message(localize(
                    language,
                    f'Para la posición "{position}", encontré {found} candidatos.',
                    f'For the "{position}" position, I found {found} candidates.',
                ), job_position=position)
            listing = "\n".join(f"{p}: {n}" for p, n in counts)
            return self._message(localize(
                language,
                f"Aquí están las posiciones de trabajo y sus conteos de candidatos:\n\n{listing}",
                f"Here are the job positions and their candidate counts:\n\n{listing}",
            ))

        sample = "\n".join(fmt.candidate_brief(c) for c in data.candidates[:5]) or "(none)"
        reply = await self._ask_llm(
            CHAT_PROMPT.format(
                language_name=fmt.language_name(language),
                count=len(data.candidates),
                candidates=sample,
                chat=self._recent_chat(data, 6) or "(none)",
                prompt=prompt,
            ),
            temperature=0.7,
            max_tokens=300,
        )
        if reply:
            return self._message(reply)
        result = self._message(localize(
            language,
            "¡Hola! Soy tu asistente de reclutamiento. Puedo ayudarte a encontrar y analizar candidatos, "
            "comparar perfiles y gestionar el proceso de contratación. ¿En qué puedo asistirte hoy?",
            "I'm here to help you with your recruitment tasks. You can ask me to show candidates, "
            "send messages, analyze data, and more!",
        ))
        if self.llm is not None:
            result.error_code = "upstream_llm_error"
        return result

    # Stored logs

    async def handle_retrieve_messages(self, intent, context, data) -> TaskResult:
        language = intent.language
        numbers = [n for n in (self._phone(p) for p in intent.names_param("phone_numbers")) if n]
        if len(numbers) > 1:
            return await self._retrieve_multiple(numbers, language)

        phone = intent.param("phone_number") or (numbers[0] if numbers else None)
        name = intent.param("candidate_name")
        candidate = None
        if not phone and name and name != "all":
            candidate = find_candidate(name, self._require_candidates(data))
            if not self._phone(candidate.phone):
                raise MissingPhoneError(candidate.name)
            phone = candidate.phone
        if not phone and context and context.candidates:
            with_phone = [c for c in context.candidates if self._phone(c.phone)]
            if len(with_phone) == 1:
                candidate = with_phone[0]
                phone = candidate.phone
        if not phone:
            found = extract_phone_numbers(intent.original_prompt, self.default_country_code)
            if len(found) > 1:
                return await self._retrieve_multiple(found, language)
            phone = found[0] if found else None
        if not phone:
            return self._message(localize(
                language,
                "Por favor proporciona un número de teléfono para recuperar los mensajes.",
                "Please provide a phone number to retrieve messages.",
            ))

        number = self._phone(phone) or phone
        if candidate is None:
            candidate = next((c for c in data.candidates
                              if same_phone(c.phone, number, self.default_country_code)), None)
        display_name = candidate.name if candidate else name

        messages = sort_chronologically(await self.message_store.by_number(number))
        summary = summarize_conversation(messages, number, language, display_name)
        payload = {
            "phone_number": number,
            "candidate_name": display_name,
            "messages": messages,
            "summary": summary["text"],
            "statistics": {k: v for k, v in summary.items() if k != "text"},
            "count": len(messages),
        }
        if candidate is not None:
            payload["candidates"] = [candidate]
            payload["candidate_details"] = {
                "name": candidate.name,
                "position": candidate.position,
                "email": candidate.email,
                "phone": candidate.phone,
                "status": candidate.status.value,
            }

        if not messages:
            return TaskResult(data=payload, explanation=localize(
                language,
                f"No se encontraron mensajes para el número {number}.",
                f"No messages found for number {number}.",
            ))
        payload["first_message"] = messages[0]
        payload["last_message"] = messages[-1]
        who = display_name or number
        return TaskResult(data=payload, explanation=localize(
            language,
            f"Se recuperaron {len(messages)} mensajes de la conversación con {who}.",
            f"Retrieved {len(messages)} messages from conversation with {who}.",
        ))

    async def _retrieve_multiple(self, numbers: List[str], language: str) -> TaskResult:
        results = []
        for number in numbers:
            messages = sort_chronologically(await self.message_store.by_number(number))
            results.append({
                "phone_number": number,
                "messages": messages,
                "count": len(messages),
                "summary": summarize_conversation(messages, number, language)["text"],
            })
        analysis = comprehensive_analysis(results, language)
        total = analysis["total_messages"]
        return TaskResult(
            data={
                "phone_numbers": numbers,
                "results": results,
                "comprehensive_analysis": analysis,
                "total_messages": total,
                "summary": analysis["text"],
                "count": total,
            },
            explanation=localize(
                language,
                f"📱 Se recuperaron mensajes de {len(numbers)} candidatos ({total} mensajes en total).",
                f"📱 Retrieved messages from {len(numbers)} candidates ({total} total messages).",
            ),
        )

    async def handle_retrieve_reference_responses(self, intent, context, data) -> TaskResult:
        language = intent.language
        responses = await self.reference_store.merged()
        if not responses:
            return TaskResult(
                data={"responses": [], "summary": summarize_reference_responses([], language), "count": 0},
                explanation=localize(language, "📞 No se encontraron respuestas de referencia.",
                                     "📞 No reference responses found."),
            )
        return TaskResult(
            data={
                "responses": responses,
                "summary": summarize_reference_responses(responses, language),
                "analysis": analyze_reference_responses(responses),
                "count": len(responses),
                "latest_response": responses[0],
                "oldest_response": responses[-1],
            },
            explanation=localize(
                language,
                f"📞 Se recuperaron {len(responses)} respuestas de referencia con análisis detallado.",
                f"📞 Retrieved {len(responses)} reference responses with detailed analysis.",
            ),
        )
