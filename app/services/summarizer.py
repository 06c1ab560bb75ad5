"""
Conversation and reference-response statistics.

Pure functions over already loaded message and response lists; nothing here
does I/O.
"""
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.helpers.formatting import localize
from app.models.references import RATING_FIELDS
from app.services.matcher import phone_digits

TIMELINE_SIZE = 5
TIMELINE_TEXT_LIMIT = 80
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """ISO strings, unix seconds or milliseconds; None when unreadable"""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.strip().isdigit()):
        value = float(raw)
        if value > 1e11:
            value /= 1000.0
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def message_time(message: Dict[str, Any]) -> Optional[datetime]:
    return parse_timestamp(message.get("timestamp")) or parse_timestamp(message.get("saved_at"))


def sort_chronologically(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(messages, key=lambda m: message_time(m) or EPOCH)


def _fmt(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M") if moment else "-"


def _text_of(message: Dict[str, Any], language: str) -> str:
    return message.get("message") or message.get("text") or localize(language, "Sin contenido", "No content")


def is_incoming(message: Dict[str, Any], phone: Optional[str] = None) -> bool:
    if message.get("type") == "incoming" or message.get("is_from_candidate"):
        return True
    return bool(phone) and phone_digits(message.get("from")) == phone_digits(phone)


def summarize_conversation(messages: List[Dict[str, Any]], phone: str, language: str = "es",
                           candidate_name: Optional[str] = None) -> Dict[str, Any]:
    """Counts, duration and a short timeline for one conversation"""
    if not messages:
        return {
            "total": 0,
            "incoming": 0,
            "outgoing": 0,
            "duration_hours": 0,
            "first_message_at": None,
            "last_message_at": None,
            "timeline": [],
            "text": localize(language, "No se encontraron mensajes para esta conversación.",
                             "No messages found for this conversation."),
        }

    ordered = sort_chronologically(messages)
    incoming = sum(1 for m in ordered if is_incoming(m, phone))
    outgoing = len(ordered) - incoming
    first, last = message_time(ordered[0]), message_time(ordered[-1])
    duration_hours = 0.0
    if len(ordered) > 1 and first and last:
        duration_hours = round((last - first).total_seconds() / 3600, 2)

    timeline = []
    for msg in ordered[-TIMELINE_SIZE:]:
        content = _text_of(msg, language)
        if len(content) > TIMELINE_TEXT_LIMIT:
            content = content[:TIMELINE_TEXT_LIMIT] + "..."
        timeline.append({
            "direction": "incoming" if is_incoming(msg, phone) else "outgoing",
            "icon": "📥" if is_incoming(msg, phone) else "📤",
            "time": _fmt(message_time(msg)),
            "content": content,
        })

    display = candidate_name or phone
    lines = [
        localize(language, f"📱 Conversación con {display}", f"📱 Conversation with {display}"),
        "",
        localize(language, "📊 Resumen:", "📊 Summary:"),
        localize(language, f"• Total de mensajes: {len(ordered)}", f"• Total messages: {len(ordered)}"),
        localize(language, f"• Mensajes entrantes: {incoming}", f"• Incoming messages: {incoming}"),
        localize(language, f"• Mensajes salientes: {outgoing}", f"• Outgoing messages: {outgoing}"),
        localize(language, f"• Duración: {duration_hours} horas", f"• Duration: {duration_hours} hours"),
        localize(language, f"• Primer mensaje: {_fmt(first)}", f"• First message: {_fmt(first)}"),
        localize(language, f"• Último mensaje: {_fmt(last)}", f"• Last message: {_fmt(last)}"),
        "",
        localize(language, f"📈 Últimos {len(timeline)} mensajes:", f"📈 Last {len(timeline)} messages:"),
    ]
    for i, item in enumerate(timeline, 1):
        lines.append(f"{i}. {item['icon']} {item['time']}: {item['content']}")

    return {
        "total": len(ordered),
        "incoming": incoming,
        "outgoing": outgoing,
        "duration_hours": duration_hours,
        "first_message_at": first.isoformat() if first else None,
        "last_message_at": last.isoformat() if last else None,
        "timeline": timeline,
        "text": "\n".join(lines),
    }


def comprehensive_analysis(results: List[Dict[str, Any]], language: str = "es") -> Dict[str, Any]:
    """Cross-number statistics.

    `results` holds one entry per requested number:
    {"phone_number": str, "messages": [...], "count": int}
    """
    if not results:
        return {
            "total_numbers": 0,
            "total_messages": 0,
            "text": localize(language, "No hay conversaciones para analizar.", "No conversations to analyze."),
        }

    all_messages = [m for r in results for m in r["messages"]]
    ordered = sort_chronologically(all_messages)
    total = len(all_messages)
    incoming = sum(1 for r in results for m in r["messages"] if is_incoming(m, r["phone_number"]))
    outgoing = total - incoming
    first = message_time(ordered[0]) if ordered else None
    last = message_time(ordered[-1]) if ordered else None

    most_active = max(results, key=lambda r: r["count"])
    last_activity = {
        r["phone_number"]: max((message_time(m) or EPOCH for m in r["messages"]), default=EPOCH)
        for r in results
    }
    most_recent = max(results, key=lambda r: last_activity[r["phone_number"]])
    with_messages = sum(1 for r in results if r["count"] > 0)
    average = round(total / len(results)) if total else 0

    lines = [
        localize(language, f"📊 **Análisis Completo de {len(results)} Candidatos**",
                 f"📊 **Comprehensive Analysis of {len(results)} Candidates**"),
        "",
        localize(language, "📈 **Estadísticas Generales:**", "📈 **General Statistics:**"),
        localize(language, f"• Total de mensajes: {total}", f"• Total messages: {total}"),
        localize(language, f"• Mensajes entrantes: {incoming}", f"• Incoming messages: {incoming}"),
        localize(language, f"• Mensajes salientes: {outgoing}", f"• Outgoing messages: {outgoing}"),
    ]
    if first and last:
        lines.append(localize(language, f"• Rango de fechas: {first.date()} - {last.date()}",
                              f"• Date range: {first.date()} - {last.date()}"))
    lines += [
        "",
        localize(language,
                 f"🏆 **Candidato Más Activo:** {most_active['phone_number']} ({most_active['count']} mensajes)",
                 f"🏆 **Most Active Candidate:** {most_active['phone_number']} ({most_active['count']} messages)"),
        localize(language,
                 f"🕒 **Última Actividad:** {most_recent['phone_number']}",
                 f"🕒 **Last Activity:** {most_recent['phone_number']}"),
        "",
        localize(language, "💡 **Insights:**", "💡 **Insights:**"),
        localize(language, f"• Promedio de mensajes por candidato: {average}",
                 f"• Average messages per candidate: {average}"),
        localize(language, f"• Candidatos con mensajes: {with_messages}/{len(results)}",
                 f"• Candidates with messages: {with_messages}/{len(results)}"),
    ]

    return {
        "total_numbers": len(results),
        "total_messages": total,
        "incoming": incoming,
        "outgoing": outgoing,
        "date_range": [first.isoformat(), last.isoformat()] if first and last else None,
        "most_active": most_active["phone_number"],
        "most_recent": most_recent["phone_number"],
        "average_per_number": average,
        "numbers_with_messages": with_messages,
        "text": "\n".join(lines),
    }


def _rating(response: Dict[str, Any], field: str) -> int:
    rating = response.get("rating") or {}
    try:
        return int(rating.get(field) or 0)
    except (TypeError, ValueError):
        return 0


def _average(values: List[int]) -> float:
    """Mean over rated values; 0 means unrated and is left out"""
    rated = [v for v in values if v > 0]
    return sum(rated) / len(rated) if rated else 0.0


def analyze_reference_responses(responses: List[Dict[str, Any]],
                                now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    total = len(responses)
    rating_averages = {
        field: round(_average([_rating(r, field) for r in responses]), 2) for field in RATING_FIELDS
    }

    by_candidate: Dict[str, List[int]] = {}
    counts: Counter = Counter()
    for r in responses:
        name = r.get("candidate_name") or r.get("reference_for") or "Unknown"
        counts[name] += 1
        by_candidate.setdefault(name, []).append(_rating(r, "overall"))
    top_rated = sorted(
        (
            {"name": name, "average_rating": _average(ratings), "reference_count": counts[name]}
            for name, ratings in by_candidate.items()
        ),
        key=lambda c: c["average_rating"],
        reverse=True,
    )
    top_rated = [c for c in top_rated if c["average_rating"] > 0][:5]

    week_ago = now - timedelta(days=7)
    recent = 0
    for r in responses:
        moment = parse_timestamp(r.get("timestamp")) or parse_timestamp(r.get("saved_at"))
        if moment and moment >= week_ago:
            recent += 1

    willing = sum(1 for r in responses if r.get("willingness_to_recommend") == "yes")
    return {
        "total_responses": total,
        "average_rating": _average([_rating(r, "overall") for r in responses]),
        "rating_averages": rating_averages,
        "recommendation_rate": (willing / total * 100) if total else 0.0,
        "recommendation_breakdown": {
            answer: sum(1 for r in responses if r.get("willingness_to_recommend") == answer)
            for answer in ("yes", "no", "maybe")
        },
        "response_quality_breakdown": {
            quality: sum(1 for r in responses if r.get("response_quality") == quality)
            for quality in ("detailed", "brief", "incomplete")
        },
        "relationship_breakdown": {
            "supervisor": sum(1 for r in responses if r.get("relationship") == "supervisor"),
            "colleague": sum(1 for r in responses if r.get("relationship") == "colleague"),
            "client": sum(1 for r in responses if r.get("relationship") == "client"),
            "unknown": sum(1 for r in responses if (r.get("relationship") or "unknown").lower() == "unknown"),
        },
        "top_rated_candidates": top_rated,
        "recent_activity": recent,
    }


def summarize_reference_responses(responses: List[Dict[str, Any]], language: str = "es") -> str:
    if not responses:
        return localize(language, "No se encontraron respuestas de referencia.", "No reference responses found.")

    analysis = analyze_reference_responses(responses)
    candidates = {r.get("reference_for") or r.get("candidate_name") or "Unknown" for r in responses}
    rec = analysis["recommendation_breakdown"]
    quality = analysis["response_quality_breakdown"]

    lines = [
        localize(language, "📞 Resumen de Respuestas de Referencia Laboral", "📞 Reference Responses Summary"),
        "",
        localize(language, "📊 Estadísticas Generales:", "📊 General Statistics:"),
        localize(language, f"• Total de respuestas: {len(responses)}", f"• Total responses: {len(responses)}"),
        localize(language, f"• Candidatos con referencias: {len(candidates)}",
                 f"• Candidates with references: {len(candidates)}"),
    ]
    if analysis["average_rating"] > 0:
        avg = f"{analysis['average_rating']:.1f}"
        lines.append(localize(language, f"• Calificación promedio: {avg}/10", f"• Average rating: {avg}/10"))
    lines += [
        localize(language, f"• Dispuestos a recomendar: {rec['yes']}", f"• Willing to recommend: {rec['yes']}"),
        localize(language, f"• No dispuestos a recomendar: {rec['no']}", f"• Not willing to recommend: {rec['no']}"),
        localize(language, f"• Tal vez recomendarían: {rec['maybe']}", f"• Maybe would recommend: {rec['maybe']}"),
        localize(language, f"• Respuestas detalladas: {quality['detailed']}", f"• Detailed responses: {quality['detailed']}"),
        localize(language, f"• Respuestas breves: {quality['brief']}", f"• Brief responses: {quality['brief']}"),
        localize(language, f"• Respuestas incompletas: {quality['incomplete']}",
                 f"• Incomplete responses: {quality['incomplete']}"),
        "",
        localize(language, "📈 Respuestas Recientes:", "📈 Recent Responses:"),
    ]
    for i, r in enumerate(responses[:5], 1):
        moment = _fmt(parse_timestamp(r.get("timestamp")) or parse_timestamp(r.get("saved_at")))
        overall = _rating(r, "overall") or "N/A"
        lines.append(
            f"{i}. {moment} - {r.get('reference_name') or 'Unknown'} - Rating: {overall}/10"
            f" - Recommend: {r.get('willingness_to_recommend') or 'unknown'}"
            f" - Quality: {r.get('response_quality') or 'unknown'}"
        )
    return "\n".join(lines)
