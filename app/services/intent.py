"""
Intent resolution: free text -> IntentRecord.

LLMIntentResolver asks the model for a JSON classification and falls back to
RuleBasedIntentResolver whenever the model is unavailable, over quota or
returns something unparseable.
"""
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from app.helpers.prompts import INTENT_SYSTEM_PROMPT, INTENT_USER_PROMPT, POSITION_MATCH_PROMPT
from app.models.intent import Action, ConversationContext, IntentRecord
from app.services.llm import LLMClient, safe_json
from app.services.matcher import extract_phone_numbers, name_tokens, normalize_name, position_matches
from app.utils.exceptions import ModelError, RateLimitError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

SPANISH_MARKERS = (
    "pregunta", "preguntas", "candidato", "candidatos", "entrevista", "trabajo", "por favor",
    "gracias", "puedes", "enviar", "envía", "envia", "seguimiento", "mensaje", "mensajes",
    "haz", "dime", "cuéntame", "cuentame", "hola", "muéstrame", "muestrame", "quiero",
    "referencias", "posición", "posiciones", "puesto", "quién", "quien", "cuál", "cual",
)

SEND_WORDS = r"\b(env[ií]a(le|les)?|enviar|manda(le|les|r)?|m[aá]ndale|send|text|escr[ií]bele|write\s+to|message\s+to)\b"
RETRIEVE_WORDS = r"\b(mensajes|messages|conversaci[oó]n|conversation|historial|history|chat)\b"
REFERENCE_RESPONSE_WORDS = (
    r"(respuestas?\s+de\s+(las\s+)?referencias?|reference\s+(responses?|replies|ratings?)"
    r"|calificaci[oó]n(es)?\s+de\s+(las\s+)?referencias?|respuestas?\s+de\s+referencia)"
)
REFERENCE_WORDS = r"\b(referencias?|references?|referees?)\b"
QUESTION_WORDS = r"\b(preguntas?|questions?)\b"
CANDIDATE_WORDS = r"\b(candidat[oa]s?|candidates?|aplicantes?|applicants?)\b"
POSITION_WORDS = (
    "full stack", "fullstack", "programador", "programadores", "desarrollador", "desarrolladores",
    "developer", "developers", "diseñador", "diseñadores", "designer", "designers",
    "contador", "contadores", "accountant", "vendedor", "vendedores", "sales",
)
ALL_WORDS = r"\b(todos|todas|all|everyone|everybody)\b"
EXCLUDE_CLAUSE = r"\b(?:excepto|except|menos|salvo|but\s+not|excluding|sin)\s+(.+?)(?:[.;!?]|$)"
MESSAGE_CLAUSE = r"(?:diciendo|saying|que\s+diga|que\s+dice|message:|mensaje:)\s*[\"'“]?(.+?)[\"'”]?\s*$"
NAME_WORD = r"[A-ZÁÉÍÓÚÑ][\wáéíóúñ]*"
RECIPIENT_CLAUSE = (
    rf"\b(?:a|al|to|para)\s+((?:{NAME_WORD}|todos|todas|all|everyone)"
    rf"(?:(?:\s*,\s*|\s+(?:y|and)\s+|\s+){NAME_WORD})*)"
)
RETRIEVE_NAME_CLAUSE = (
    r"\b(?:mensajes|messages|conversaci[oó]n|conversation|chat|historial|history)\s+"
    r"(?:de|del|con|with|from|for|para)\s+([A-ZÁÉÍÓÚÑ][\wáéíóúñ]+(?:\s+[A-ZÁÉÍÓÚÑ][\wáéíóúñ]+)?)"
)
NAME_STOPWORDS = {
    "todos", "todas", "los", "las", "all", "the", "everyone", "candidatos", "candidates",
    "referencias", "references", "el", "la", "un", "una", "mi", "my", "sus", "their",
}


def detect_language(text: str) -> str:
    lowered = (text or "").lower()
    for word in SPANISH_MARKERS:
        if re.search(rf"(?<!\w){re.escape(word)}(?!\w)", lowered):
            return "es"
    return "en"


def normalize_intent(record: IntentRecord) -> IntentRecord:
    """Apply the one post-classification rewrite and make sure language is set"""
    if record.action == Action.SEND_REFERENCE_MESSAGE and record.param("phone_number"):
        record.action = Action.SEND_DIRECT_REFERENCE_MESSAGE
        if record.param("candidate_name") and not record.param("reference_name"):
            record.parameters["reference_name"] = record.parameters["candidate_name"]
    if record.language not in ("es", "en"):
        record.language = detect_language(record.original_prompt)
    record.parameters.setdefault("language", record.language)
    return record


def _split_names(segment: str) -> List[str]:
    parts = re.split(r"\s*(?:,|\by\b|\band\b|&)\s*", segment)
    names = []
    for part in parts:
        words = [w for w in part.split() if w.lower() not in NAME_STOPWORDS]
        if words and words[0][:1].isupper():
            names.append(" ".join(words))
    return names


def extract_exclusions(text: str) -> List[str]:
    match = re.search(EXCLUDE_CLAUSE, text, re.IGNORECASE)
    return _split_names(match.group(1)) if match else []


def extract_message(text: str) -> Optional[str]:
    match = re.search(MESSAGE_CLAUSE, text, re.IGNORECASE)
    return match.group(1).strip() if match else None


def extract_count(text: str) -> Optional[int]:
    match = re.search(r"\b(?:top|mejores|best|los)\s+(\d+)\b", text, re.IGNORECASE) or re.search(r"\b(\d{1,2})\b", text)
    return int(match.group(1)) if match else None


def extract_position(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for word in POSITION_WORDS:
        if re.search(rf"\b{re.escape(word)}\b", lowered):
            return word
    return None


class IntentResolver(ABC):
    @abstractmethod
    async def resolve(self, text: str, context: Optional[ConversationContext] = None) -> IntentRecord:
        """Classify one user turn"""


class RuleBasedIntentResolver(IntentResolver):
    """Deterministic keyword classifier; first matching rule wins"""

    def __init__(self, default_country_code: str = "507"):
        self.default_country_code = default_country_code

    async def resolve(self, text: str, context: Optional[ConversationContext] = None) -> IntentRecord:
        return normalize_intent(self.classify(text))

    def classify(self, text: str) -> IntentRecord:
        text = (text or "").strip()
        language = detect_language(text)
        lowered = text.lower()
        params: Dict[str, Any] = {"language": language}

        def record(action: Action, reasoning: str) -> IntentRecord:
            return IntentRecord(
                action=action,
                intent=text,
                reasoning=f"rule: {reasoning}",
                parameters=params,
                language=language,
                original_prompt=text,
            )

        is_send = re.search(SEND_WORDS, lowered) is not None or extract_message(text) is not None
        is_retrieve = re.search(RETRIEVE_WORDS, lowered) is not None and not is_send
        phones = extract_phone_numbers(text, self.default_country_code)
        exclusions = extract_exclusions(text)
        if exclusions:
            params["exclude_candidates"] = exclusions

        if re.search(REFERENCE_RESPONSE_WORDS, lowered):
            return record(Action.RETRIEVE_REFERENCE_RESPONSES, "reference responses")

        if is_retrieve and phones:
            if len(phones) > 1:
                params["phone_numbers"] = phones
            else:
                params["phone_number"] = phones[0]
            return record(Action.RETRIEVE_MESSAGES, "retrieve by phone")

        if is_retrieve:
            match = re.search(RETRIEVE_NAME_CLAUSE, text)
            if match:
                params["candidate_name"] = match.group(1)
                return record(Action.RETRIEVE_MESSAGES, "retrieve by name")

        is_reference = re.search(REFERENCE_WORDS, lowered) is not None

        if phones and is_send:
            params["phone_number"] = phones[0]
            if is_reference:
                return record(Action.SEND_REFERENCE_MESSAGE, "reference template to phone")
            params["direct_phone"] = True
            params["message"] = extract_message(text) or "Hola"
            return record(Action.SEND_MESSAGE, "direct phone send")

        recipients = self._recipients(text)
        position = extract_position(text)

        if is_reference:
            self._apply_recipients(params, recipients, position)
            if is_send:
                if params.get("candidate_name") == "all" and not position:
                    params.pop("candidate_name")
                return record(Action.SEND_REFERENCE_MESSAGE, "send to references")
            return record(Action.SHOW_REFERENCES, "references")

        if is_send:
            self._apply_recipients(params, recipients, position)
            message = extract_message(text)
            if message:
                params["message"] = message
            return record(Action.SEND_MESSAGE, "send message")

        if re.search(QUESTION_WORDS, lowered):
            self._apply_recipients(params, recipients, position)
            return record(Action.GENERATE_QUESTIONS, "questions")

        if position:
            params["job_position"] = position
            count = extract_count(text)
            if count:
                params["number_of_candidates"] = count
            return record(Action.SHOW_CANDIDATES, "position keyword")

        if re.search(CANDIDATE_WORDS, lowered):
            params["candidate_name"] = "all"
            return record(Action.SHOW_CANDIDATES, "candidates")

        return record(Action.GENERAL_CHAT, "default")

    @staticmethod
    def _recipients(text: str) -> List[str]:
        match = re.search(RECIPIENT_CLAUSE, text)
        if not match:
            return []
        segment = match.group(1)
        if re.search(ALL_WORDS, segment, re.IGNORECASE):
            return ["all"]
        return _split_names(segment)

    @staticmethod
    def _apply_recipients(params: Dict[str, Any], recipients: List[str], position: Optional[str]) -> None:
        if position:
            params["job_position"] = position
        if recipients == ["all"]:
            params["candidate_name"] = "all"
        elif len(recipients) == 1:
            params["candidate_name"] = recipients[0]
        elif recipients:
            params["candidate_names"] = recipients
        elif position:
            params["candidate_name"] = "all"


class LLMIntentResolver(IntentResolver):
    def __init__(self, llm: LLMClient, fallback: RuleBasedIntentResolver):
        self.llm = llm
        self.fallback = fallback

    @staticmethod
    def _describe_context(context: Optional[ConversationContext]) -> str:
        if context is None:
            return "(none)"
        names = ", ".join(c.name for c in context.candidates[:10])
        return (
            f"last_action: {context.last_action.value if context.last_action else None}\n"
            f"job_position: {context.job_position}\n"
            f"candidates: {names or '(none)'}"
        )

    async def resolve(self, text: str, context: Optional[ConversationContext] = None) -> IntentRecord:
        try:
            reply = await self.llm.generate(
                INTENT_USER_PROMPT.format(context=self._describe_context(context), prompt=text),
                system=INTENT_SYSTEM_PROMPT,
                temperature=0.1,
            )
        except RateLimitError:
            logger.warning("LLM quota exceeded, using rule-based intent detection")
            return await self.fallback.resolve(text, context)
        except ModelError as e:
            logger.warning(f"LLM intent detection failed ({e.message}), using rule-based intent detection")
            return await self.fallback.resolve(text, context)

        data = safe_json(reply, None)
        action = Action.parse(data.get("action")) if isinstance(data, dict) else None
        if action is None:
            logger.warning(f"Unparseable intent reply, using rule-based intent detection: {reply[:200]!r}")
            return await self.fallback.resolve(text, context)

        parameters = data.get("parameters") if isinstance(data.get("parameters"), dict) else {}
        language = parameters.get("language") if parameters.get("language") in ("es", "en") else detect_language(text)
        record = IntentRecord(
            action=action,
            intent=str(data.get("intent") or text),
            reasoning=str(data.get("reasoning") or ""),
            parameters=parameters,
            language=language,
            original_prompt=text,
        )
        return normalize_intent(record)


class PositionResolver(ABC):
    @abstractmethod
    async def match_position(self, text: str, positions: List[str]) -> Optional[str]:
        """Pick the position the text refers to, or None"""


class KeywordPositionResolver(PositionResolver):
    """Containment first, then the position sharing the most significant words"""

    async def match_position(self, text: str, positions: List[str]) -> Optional[str]:
        for position in positions:
            if normalize_name(position) in normalize_name(text):
                return position
        words = {t for t in name_tokens(text) if len(t) > 3}
        best, best_overlap = None, 0
        for position in positions:
            overlap = len(words & {t for t in name_tokens(position) if len(t) > 3})
            if overlap > best_overlap:
                best, best_overlap = position, overlap
        return best


class LLMPositionResolver(PositionResolver):
    def __init__(self, llm: LLMClient, fallback: Optional[PositionResolver] = None):
        self.llm = llm
        self.fallback = fallback or KeywordPositionResolver()

    async def match_position(self, text: str, positions: List[str]) -> Optional[str]:
        if not positions:
            return None
        try:
            reply = await self.llm.generate(
                POSITION_MATCH_PROMPT.format(positions="\n".join(positions), text=text),
                temperature=0.0,
                max_tokens=30,
            )
        except (ModelError, RateLimitError) as e:
            logger.warning(f"LLM position matching failed ({e.message}), using keywords")
            return await self.fallback.match_position(text, positions)

        answer = reply.strip().strip('"').strip()
        if not answer or "NINGUNA" in answer.upper():
            return None
        for position in positions:
            if normalize_name(position) == normalize_name(answer):
                return position
        for position in positions:
            if position_matches(answer, position):
                return position
        return await self.fallback.match_position(text, positions)


def build_intent_resolver(mode: str, llm: Optional[LLMClient], default_country_code: str) -> IntentResolver:
    rules = RuleBasedIntentResolver(default_country_code)
    if mode == "rules" or llm is None:
        return rules
    return LLMIntentResolver(llm, rules)


def build_position_resolver(mode: str, llm: Optional[LLMClient]) -> PositionResolver:
    if mode == "rules" or llm is None:
        return KeywordPositionResolver()
    return LLMPositionResolver(llm)
