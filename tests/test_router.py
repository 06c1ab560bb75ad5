import pytest
from unittest.mock import AsyncMock

from app.models.intent import Action, ConversationContext, IntentRecord
from app.services.intent import KeywordPositionResolver
from app.services.router import ActionRouter, RouteData
from tests.conftest import StubLLM


def intent(action, prompt="", language="es", **params):
    return IntentRecord(action=action, intent=prompt, parameters=params, language=language, original_prompt=prompt)


class TestRouterTable:
    """Dispatch table and error boundary"""

    def test_every_action_has_a_handler(self, router):
        """The handler table covers the whole action vocabulary"""
        assert set(router.handlers) == set(Action)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed_result(self, router, route_data):
        """A crashing handler yields success=False instead of raising"""
        router.handlers[Action.SHOW_POSITIONS] = AsyncMock(side_effect=RuntimeError("boom"))

        result = await router.route(intent(Action.SHOW_POSITIONS), None, route_data)

        assert result.success is False
        assert result.error_code == "internal_error"
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_empty_directory_is_no_data(self, router):
        """Directory-backed actions on an empty directory report no_data"""
        result = await router.route(intent(Action.SHOW_CANDIDATES, "muéstrame candidatos"), None, RouteData())

        assert result.success is True
        assert result.error_code == "no_data"
        assert "No tengo acceso" in result.data["message"]


class TestMassSendGuard:
    """Bulk sends need a name, position or contextual subset"""

    @pytest.mark.asyncio
    async def test_all_without_scope_is_blocked(self, router, route_data):
        """Sending to 'all' with no filter is refused and nothing is dispatched"""
        result = await router.route(intent(Action.SEND_MESSAGE, "envía a todos", candidate_name="all"),
                                    None, route_data)

        assert result.success is False
        assert result.error_code == "safety_blocked"
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_questions_to_all_are_blocked(self, router, route_data):
        """generate_questions shares the guard"""
        result = await router.route(intent(Action.GENERATE_QUESTIONS, candidate_name="all"), None, route_data)

        assert result.error_code == "safety_blocked"
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_all_references_without_scope_is_blocked(self, router, route_data):
        """Template sends to every reference need a candidate scope"""
        result = await router.route(intent(Action.SEND_REFERENCE_MESSAGE), None, route_data)

        assert result.success is False
        assert result.error_code == "safety_blocked"

    @pytest.mark.asyncio
    async def test_position_scope_is_allowed(self, router, route_data):
        """'all' restricted to a position sends, skipping unreachable candidates"""
        result = await router.route(
            intent(Action.SEND_MESSAGE, candidate_name="all", job_position="Full Stack", message="Hola equipo"),
            None, route_data,
        )

        assert result.success is True
        assert [m.number for m in result.dispatch] == ["+50761234567", "+50763334444"]
        assert result.data["skipped"] == ["Mariana Torres"]
        assert all(m.message == "Hola equipo" for m in result.dispatch)

    @pytest.mark.asyncio
    async def test_context_pronoun_targets_previous_candidates(self, router, route_data, candidates):
        """'send her a message' reuses the remembered candidate set"""
        context = ConversationContext(candidates=[candidates[2]])

        result = await router.route(intent(Action.SEND_MESSAGE, "envíale a ella un mensaje", message="Hola"),
                                    context, route_data)

        assert [m.number for m in result.dispatch] == ["+50763334444"]

    @pytest.mark.asyncio
    async def test_unfiltered_context_is_blocked(self, router, route_data, candidates):
        """A remembered set spanning the whole directory is not a filter"""
        context = ConversationContext(candidates=candidates)

        result = await router.route(
            intent(Action.SEND_MESSAGE, "envíales a todos ellos un mensaje", candidate_name="all", message="Hola"),
            context, route_data,
        )

        assert result.success is False
        assert result.error_code == "safety_blocked"
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_unfiltered_context_blocks_reference_sends(self, router, route_data, candidates):
        context = ConversationContext(candidates=candidates)

        result = await router.route(intent(Action.SEND_REFERENCE_MESSAGE, "escribe a las referencias de ellos"),
                                    context, route_data)

        assert result.error_code == "safety_blocked"
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_explicit_names_win_over_context(self, router, route_data, candidates):
        """Named candidates are the recipients even when the prompt has a pronoun"""
        context = ConversationContext(candidates=candidates[:3])

        result = await router.route(
            intent(Action.SEND_MESSAGE, "send them a message", language="en",
                   candidate_names=["Carlos Ruiz", "Ana López"], message="Hi"),
            context, route_data,
        )

        assert [m.candidate for m in result.dispatch] == ["Carlos Ruiz", "Ana López"]

    @pytest.mark.asyncio
    async def test_explicit_position_wins_over_context(self, router, route_data, candidates):
        context = ConversationContext(candidates=[candidates[0]])

        result = await router.route(
            intent(Action.SEND_MESSAGE, "mándales a ellos", job_position="Diseñador UX", message="Hola"),
            context, route_data,
        )

        assert [m.candidate for m in result.dispatch] == ["Carlos Ruiz"]


class TestExclusion:
    """Excluded names never reach the dispatch list"""

    @pytest.mark.asyncio
    async def test_excluded_candidate_is_not_messaged(self, router, route_data):
        """Exclusion is applied before phone resolution"""
        result = await router.route(
            intent(Action.SEND_MESSAGE, candidate_name="all", job_position="Full Stack",
                   exclude_candidates=["Ana"], message="Hola"),
            None, route_data,
        )

        assert [m.candidate for m in result.dispatch] == ["Carlos Gómez"]
        # "Ana" is also a substring of "Mariana"
        assert result.data["skipped"] == []

    @pytest.mark.asyncio
    async def test_excluded_reference_is_not_messaged(self, router, route_data):
        """exclude_references drops references before sending"""
        result = await router.route(
            intent(Action.SEND_REFERENCE_MESSAGE, candidate_name="Carlos Gómez", exclude_references=["Laura"]),
            None, route_data,
        )

        # only Jorge Díaz remains and he has no phone
        assert result.error_code == "missing_phone"
        assert result.dispatch == []


class TestCandidateResolution:
    """Single, ambiguous and missing matches"""

    @pytest.mark.asyncio
    async def test_full_name_sends_single_message(self, router, route_data):
        """An exact full name resolves to one recipient"""
        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="Carlos Gómez", message="Hola Carlos"),
                                    None, route_data)

        assert result.success is True
        assert len(result.dispatch) == 1
        assert result.dispatch[0].number == "+50761234567"
        assert result.explanation.startswith("Envié un mensaje a Carlos Gómez.")

    @pytest.mark.asyncio
    async def test_unaccented_name_still_matches(self, router, route_data):
        """Matching is accent-insensitive"""
        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="carlos gomez", message="Hola"),
                                    None, route_data)

        assert [m.candidate for m in result.dispatch] == ["Carlos Gómez"]

    @pytest.mark.asyncio
    async def test_shared_first_name_is_ambiguous(self, router, route_data):
        """'Carlos' matches two candidates equally well"""
        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="Carlos", message="Hola"),
                                    None, route_data)

        assert result.success is True
        assert result.error_code == "ambiguous_candidate"
        assert set(result.data["matches"]) == {"Carlos Gómez", "Carlos Ruiz"}
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_unknown_name_asks_for_clarification(self, router, route_data):
        """A name not in the directory gives candidate_not_found"""
        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="Zoe", message="Hola"),
                                    None, route_data)

        assert result.error_code == "candidate_not_found"
        assert 'No pude encontrar un candidato llamado "Zoe"' in result.explanation

    @pytest.mark.asyncio
    async def test_candidate_without_phone(self, router, route_data):
        """A single recipient without a phone is reported, not sent"""
        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="Pedro Salas", message="Hola"),
                                    None, route_data)

        assert result.error_code == "missing_phone"
        assert result.dispatch == []

    @pytest.mark.asyncio
    async def test_direct_phone(self, router, route_data):
        """A phone parameter bypasses the directory"""
        result = await router.route(intent(Action.SEND_MESSAGE, phone_number="6123-4567", message="Hola"),
                                    None, route_data)

        assert result.dispatch[0].number == "+50761234567"
        assert result.dispatch[0].candidate == "Direct Message (+50761234567)"

    @pytest.mark.asyncio
    async def test_first_name_resolves_single_candidate(self, router, candidates):
        """With one Carlos in the directory a first name is enough"""
        data = RouteData(candidates=[c for c in candidates if c.name != "Carlos Ruiz"])

        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="Carlos", message="Hola"), None, data)

        assert result.success is True
        assert result.error_code is None
        assert len(result.dispatch) == 1
        assert result.dispatch[0].candidate == "Carlos Gómez"
        assert result.dispatch[0].number == "+50761234567"

    @pytest.mark.asyncio
    async def test_unknown_name_falls_back_to_context_visibly(self, router, route_data, candidates):
        """The explanation says the previous candidate was used instead"""
        context = ConversationContext(candidates=[candidates[2]])

        result = await router.route(intent(Action.SEND_MESSAGE, candidate_name="Zoe", message="Hola"),
                                    context, route_data)

        assert [m.candidate for m in result.dispatch] == ["Ana López"]
        assert result.explanation.startswith('⚠️ No encontré a "Zoe" en el directorio; usé al candidato anterior, Ana López.')


class TestReferenceMessages:
    """Template sends to references"""

    @pytest.mark.asyncio
    async def test_template_send_to_candidate_references(self, router, route_data):
        """One template per reference with a phone"""
        result = await router.route(intent(Action.SEND_REFERENCE_MESSAGE, candidate_name="Carlos Gómez"),
                                    None, route_data)

        assert result.success is True
        assert len(result.dispatch) == 1
        item = result.dispatch[0]
        assert item.kind == "template"
        assert item.number == "+50765550001"
        assert item.template["name"] == "referencia_laboral"
        assert item.template["components"][0]["parameters"][0]["text"] == "Carlos Gómez"
        assert 'plantilla "referencia_laboral"' in result.explanation
        assert "Jorge Díaz" in result.explanation

    @pytest.mark.asyncio
    async def test_direct_reference_defaults_subject(self, router):
        """Without a reference name the template says 'el candidato'"""
        result = await router.route(intent(Action.SEND_DIRECT_REFERENCE_MESSAGE, phone_number="+50765550001"),
                                    None, RouteData())

        assert result.dispatch[0].template["components"][0]["parameters"][0]["text"] == "el candidato"


class TestDirectoryViews:
    """Read-only handlers"""

    @pytest.mark.asyncio
    async def test_positions_sorted_by_count(self, router, route_data):
        """Most populated position first"""
        result = await router.route(intent(Action.SHOW_POSITIONS), None, route_data)

        assert result.data["positions"][0] == "Desarrollador Full Stack"
        assert result.data["position_counts"]["Desarrollador Full Stack"] == 3

    @pytest.mark.asyncio
    async def test_plain_listing_reports_total(self, router, route_data):
        """Listing without filters shows everything under the cap"""
        result = await router.route(intent(Action.SHOW_CANDIDATES, "muéstrame los candidatos", candidate_name="all"),
                                    None, route_data)

        assert result.data["total_count"] == 5
        assert "needs_analysis" not in result.data

    @pytest.mark.asyncio
    async def test_listing_is_capped(self, stores, route_data, candidates):
        """Only the first N are listed, the true total is reported"""
        message_store, reference_store = stores
        capped = ActionRouter(None, KeywordPositionResolver(), message_store, reference_store, candidate_list_cap=2)

        result = await capped.route(intent(Action.SHOW_CANDIDATES, "candidatos"), None, route_data)

        assert len(result.data["candidates"]) == 2
        assert result.data["total_count"] == 5
        assert "*Showing 2 of 5 total candidates*" in result.data["message"]

    @pytest.mark.asyncio
    async def test_top_n_starts_analysis(self, router, route_data):
        """Top-N phrasing with a position hands an analysis prompt back"""
        result = await router.route(
            intent(Action.SHOW_CANDIDATES, "top 2 full stack", job_position="full stack", number_of_candidates=2),
            None, route_data,
        )

        assert result.data["needs_analysis"] is True
        assert result.data["count"] == 2
        assert result.data["job_position"] == "full stack"
        assert "Carlos Gómez" in result.data["analysis_prompt"]

    @pytest.mark.asyncio
    async def test_top_n_without_position_asks(self, router, route_data):
        """No position anywhere means the user is asked for one"""
        result = await router.route(intent(Action.SHOW_CANDIDATES, "best candidates"), None, route_data)

        assert result.data["message"].startswith("Necesito saber qué posición")

    @pytest.mark.asyncio
    async def test_top_n_uses_context_position(self, router, route_data):
        """The remembered position fills in a missing one"""
        context = ConversationContext(job_position="Diseñador UX")

        result = await router.route(intent(Action.SHOW_CANDIDATES, "los mejores 3"), context, route_data)

        assert result.data["job_position"] == "Diseñador UX"
        assert [c.name for c in result.data["candidates"]] == ["Carlos Ruiz"]

    @pytest.mark.asyncio
    async def test_provide_info_profile(self, router, route_data):
        """A full name in the prompt resolves and renders the profile"""
        result = await router.route(intent(Action.PROVIDE_INFO, "dame el número de Ana López"), None, route_data)

        assert "Teléfono: 6333-4444" in result.data["message"]
        assert "Referencias (1):" in result.data["message"]
        assert result.data["candidate_name"] == "Ana López"

    @pytest.mark.asyncio
    async def test_references_for_candidate(self, router, route_data):
        """show_references lists the candidate's referees"""
        result = await router.route(intent(Action.SHOW_REFERENCES, candidate_name="Ana López"), None, route_data)

        assert "Marta Vega" in result.data["message"]
        assert result.data["count"] == 1


class TestGeneratedContent:
    """Handlers that talk to the LLM degrade to fixed text"""

    @pytest.mark.asyncio
    async def test_default_questions_without_llm(self, router, route_data):
        """Questions fall back to the default set"""
        result = await router.route(intent(Action.GENERATE_QUESTIONS, candidate_name="Ana López"), None, route_data)

        assert len(result.dispatch) == 1
        body = result.dispatch[0].message
        assert body.startswith("Hola Ana López, te envío algunas preguntas de seguimiento:")
        assert "1. ¿Podrías contarme" in body

    @pytest.mark.asyncio
    async def test_llm_questions_are_renumbered(self, stores, route_data):
        """LLM numbering and bullets are stripped before formatting"""
        message_store, reference_store = stores
        llm = StubLLM(["1. ¿Qué stack usas?\n2) ¿Por qué te interesa?\n- ¿Cuándo puedes empezar?"])
        router = ActionRouter(llm, KeywordPositionResolver(), message_store, reference_store)

        result = await router.route(intent(Action.GENERATE_QUESTIONS, candidate_name="Ana López"), None, route_data)

        assert "1. ¿Qué stack usas?\n2. ¿Por qué te interesa?\n3. ¿Cuándo puedes empezar?" in result.dispatch[0].message

    @pytest.mark.asyncio
    async def test_compare_with_failing_llm(self, stores, route_data):
        """A failing model gives a bare list and upstream_llm_error"""
        message_store, reference_store = stores
        router = ActionRouter(StubLLM(fail=True), KeywordPositionResolver(), message_store, reference_store)

        result = await router.route(intent(Action.COMPARE_CANDIDATES, job_position="Full Stack"), None, route_data)

        assert result.success is True
        assert result.error_code == "upstream_llm_error"
        assert "- Carlos Gómez: 5 años experience" in result.data["comparison"]

    @pytest.mark.asyncio
    async def test_best_candidate_by_score(self, router, route_data):
        """Without resume text the scorer picks the best candidate"""
        result = await router.route(intent(Action.ANALYZE_RESUME), None, route_data)

        assert result.data["best_candidate"] == "Carlos Gómez"
        assert result.data["candidates_analyzed"] == 5

    @pytest.mark.asyncio
    async def test_general_chat_fallback(self, router, route_data):
        """No LLM configured gives the fixed greeting"""
        result = await router.route(intent(Action.GENERAL_CHAT, "hola"), None, route_data)

        assert result.data["message"].startswith("¡Hola! Soy tu asistente de reclutamiento.")
        assert result.error_code is None


class TestStoredLogs:
    """Message and reference log handlers"""

    @pytest.mark.asyncio
    async def test_unknown_number_has_no_messages(self, router, route_data):
        """An unknown number is a successful empty result"""
        result = await router.route(intent(Action.RETRIEVE_MESSAGES, phone_number="+50769990000"), None, route_data)

        assert result.success is True
        assert result.data["count"] == 0
        assert result.explanation == "No se encontraron mensajes para el número +50769990000."

    @pytest.mark.asyncio
    async def test_messages_by_candidate_name(self, router, route_data, stores):
        """The candidate's phone is looked up in the directory"""
        message_store, _ = stores
        await message_store.save({"id": "m1", "from": "50761234567", "message": "Hola, sigo interesado",
                                  "type": "incoming", "timestamp": "2025-01-02T10:00:00+00:00"})
        await message_store.save({"id": "m0", "to": "+50761234567", "message": "¿Sigues interesado?",
                                  "type": "outgoing", "timestamp": "2025-01-01T10:00:00+00:00"})

        result = await router.route(intent(Action.RETRIEVE_MESSAGES, candidate_name="Carlos Gómez"), None, route_data)

        assert result.data["count"] == 2
        assert [m["id"] for m in result.data["messages"]] == ["m0", "m1"]
        assert result.explanation == "Se recuperaron 2 mensajes de la conversación con Carlos Gómez."

    @pytest.mark.asyncio
    async def test_no_reference_responses(self, router):
        """Empty reference logs still succeed"""
        result = await router.route(intent(Action.RETRIEVE_REFERENCE_RESPONSES), None, RouteData())

        assert result.success is True
        assert result.data["count"] == 0
