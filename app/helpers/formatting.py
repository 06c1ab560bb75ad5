from typing import Any, Dict, List, Sequence

from app.models.candidate import Candidate
from app.models.dispatch import OutboundMessage, TaskResult
from app.models.intent import Action

LANGUAGE_NAMES = {"es": "Spanish", "en": "English"}


def localize(language: str, es: str, en: str) -> str:
    return en if language == "en" else es


def language_name(language: str) -> str:
    return LANGUAGE_NAMES.get(language, "Spanish")


def candidate_line(candidate: Candidate) -> str:
    return f"{candidate.name} ({candidate.position}) - {candidate.experience or 'N/A'}"


def enumerate_candidates(candidates: Sequence[Candidate]) -> str:
    return "\n".join(f"{i}. {candidate_line(c)}" for i, c in enumerate(candidates, 1))


def candidate_brief(candidate: Candidate) -> str:
    """One block per candidate for LLM prompts"""
    return (
        f"- {candidate.name} | position: {candidate.position} | experience: {candidate.experience or 'N/A'}"
        f" | skills: {', '.join(candidate.skills) or 'N/A'} | languages: {', '.join(candidate.languages) or 'N/A'}"
        f" | location: {candidate.location or 'N/A'} | salary: {candidate.salary_expectation or 'N/A'}"
        f" | availability: {candidate.availability or 'N/A'}"
    )


def candidate_profile(candidate: Candidate) -> str:
    """Fixed-field profile shown for provide_info"""
    missing = "No proporcionado"
    lines = [
        f"**{candidate.name}**",
        f"Email: {candidate.email or missing}",
        f"Teléfono: {candidate.phone or missing}",
        f"Posición: {candidate.position or 'No especificada'}",
        f"Experiencia: {candidate.experience or 'No especificada'}",
        f"Habilidades: {', '.join(candidate.skills) or 'No especificadas'}",
        f"Idiomas: {', '.join(candidate.languages) or 'No especificados'}",
        f"Ubicación: {candidate.location or 'No especificada'}",
        f"Expectativa Salarial: {candidate.salary_expectation or 'No especificada'}",
        f"Disponibilidad: {candidate.availability or 'No especificada'}",
    ]
    info = "\n".join(lines)
    if not candidate.references:
        return info + "\n\nReferencias: No disponibles"
    info += f"\n\nReferencias ({len(candidate.references)}):\n"
    for i, ref in enumerate(candidate.references, 1):
        info += (
            f"{i}. {ref.name}\n"
            f"   • Posición: {ref.position or 'No especificada'}\n"
            f"   • Empresa: {ref.company or 'No especificada'}\n"
            f"   • Teléfono: {ref.contact.phone or 'No disponible'}\n"
            f"   • Email: {ref.contact.email or 'No disponible'}\n"
        )
    return info


def references_block(candidate: Candidate, language: str) -> str:
    if not candidate.references:
        return localize(language, f"{candidate.name}: sin referencias registradas.",
                        f"{candidate.name}: no references on file.")
    lines = [f"**{candidate.name}** ({candidate.position})"]
    for ref in candidate.references:
        lines.append(
            f"  • {ref.name} - {ref.position or 'N/A'}, {ref.company or 'N/A'}"
            f" ({ref.contact.phone or localize(language, 'sin teléfono', 'no phone')})"
        )
    return "\n".join(lines)


def questions_message(questions: List[str], name: str, language: str) -> str:
    numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, 1))
    return localize(
        language,
        f"Hola {name}, te envío algunas preguntas de seguimiento:\n\n{numbered}",
        f"Hello {name}, here are some follow-up questions:\n\n{numbered}",
    )


def single_send_explanation(message: OutboundMessage, language: str) -> str:
    return localize(
        language,
        f"Envié un mensaje a {message.candidate}. Esto es lo que le envié:\n\n{message.message}",
        f"I sent a message to {message.candidate}. Here is what I sent them:\n\n{message.message}",
    )


def bulk_send_explanation(messages: List[OutboundMessage], language: str) -> str:
    listing = "\n".join(f"• {m.candidate}: {m.message[:100]}..." for m in messages)
    return localize(
        language,
        f"Envié mensajes a {len(messages)} candidatos:\n\n{listing}",
        f"I sent messages to {len(messages)} candidates:\n\n{listing}",
    )


def reference_send_explanation(count: int, subject: str, template_name: str, language: str) -> str:
    return localize(
        language,
        f'✅ Se enviaron {count} mensajes de referencia para {subject} usando la plantilla "{template_name}".',
        f'✅ Sent {count} reference messages for {subject} using the "{template_name}" template.',
    )


def bulk_reference_explanation(count: int, language: str) -> str:
    return localize(
        language,
        f"✅ Se enviaron {count} mensajes a referencias de candidatos exitosamente.",
        f"✅ Successfully sent {count} messages to candidate references.",
    )


def context_fallback_note(name: str, used: str, language: str) -> str:
    return localize(
        language,
        f'⚠️ No encontré a "{name}" en el directorio; usé al candidato anterior, {used}.\n\n',
        f'⚠️ I couldn\'t find "{name}" in the directory; I used the previous candidate, {used}.\n\n',
    )


def skipped_note(skipped: List[str], language: str) -> str:
    if not skipped:
        return ""
    names = ", ".join(skipped)
    return localize(
        language,
        f"\n\n⚠️ Sin número de teléfono válido (omitidos): {names}",
        f"\n\n⚠️ No valid phone number (skipped): {names}",
    )


def action_summary(action: Action, result: TaskResult) -> str:
    """Generic one-line summary of an action outcome"""
    if not result.success:
        return result.error or "Action failed"
    data: Dict[str, Any] = result.data
    if action in (Action.SEND_MESSAGE, Action.GENERATE_QUESTIONS) and len(result.dispatch) > 1:
        return f"Sent messages to {len(result.dispatch)} candidates"
    if action == Action.ANALYZE_MESSAGES:
        return f"Analyzed {data.get('analyzed', 0)} messages from candidates"
    if action == Action.SHOW_CANDIDATES:
        return f"Showing {len(data.get('candidates') or [])} candidate(s)"
    if action == Action.COMPARE_CANDIDATES:
        return f"Compared {len(data.get('candidates') or [])} candidates"
    if action == Action.ANALYZE_RESUME:
        if data.get("best_candidate"):
            return (f"Analyzed {data.get('candidates_analyzed', 0)} candidates "
                    f"and found {data['best_candidate']} candidate")
        return f"Analyzed resume ({data.get('resume_length', 0)} characters)"
    if action == Action.GENERAL_CHAT:
        return "Provided information about recruitment status"
    return "Action completed successfully"
