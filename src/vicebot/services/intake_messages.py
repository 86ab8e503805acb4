"""User-facing texts for the intake flow."""

from vicebot.domain.areas import AREA_LABELS, area_label, area_list_label

CONFIRM_INSTRUCTION = "¿Lo envío? Responde *sí* para enviar o *no* para cancelar."
CONFIRM_REPROMPT = "🤔 No entendí. " + CONFIRM_INSTRUCTION
CANCELLED = "❌ Listo, cancelé el reporte. Si necesitas algo más, aquí estoy."
RESET_DONE = "🔄 Reinicié la conversación. Cuéntame qué necesitas reportar."
ASK_PLACE = '📍 ¿En qué lugar es? (ej: "hab 1311", "Villa 6", "Lobby")'
MEDIA_ASK_WHAT_AND_WHERE = "📸 Recibí la foto. ¿Qué sucede y en qué lugar?"
MEDIA_ASK_WHAT = "📸 Recibí la foto. ¿Qué sucede?"
VERSION_KEEP_ACK = "👌 Sigo con el reporte actual."
VERSION_REPROMPT = "Responde *primero* para seguir con el reporte actual o *segundo* para el nuevo."
ASK_AREA = "🏷️ ¿A qué área lo envío? " + ", ".join(AREA_LABELS.values()) + "."


def format_preview(draft) -> str:
    """Draft summary; missing slots are marked explicitly."""
    lines = [
        "📝 *Vista previa del ticket*\n",
        f"• *Descripción:* {draft.descripcion or draft.descripcion_original or '—'}",
        f"• *Lugar:* {draft.lugar or '❓ _Falta indicar_'}",
        f"• *Área destino:* {area_label(draft.area_destino) if draft.area_destino else '❓ _Sin detectar_'}",
    ]
    cc = [a for a in draft.areas if a != draft.area_destino]
    if cc:
        lines.append(f"• *CC:* {area_list_label(cc)}")
    if draft.details:
        lines.append("• *Detalles:* " + "; ".join(draft.details))
    if draft.interpretacion:
        lines.append(f"• *Foto:* {draft.interpretacion}")
    return "\n".join(lines)


def format_confirm_prompt(draft) -> str:
    return format_preview(draft) + "\n\n" + CONFIRM_INSTRUCTION


def format_place_prompt(suggestions: list[str] | None = None) -> str:
    if suggestions:
        options = "\n".join(f"{i}. {s}" for i, s in enumerate(suggestions, 1))
        return f"📍 No encontré ese lugar. ¿Te refieres a alguno de estos?\n{options}\n\nResponde con el número o dime otro lugar."
    return ASK_PLACE


def format_area_suggestion(area: str) -> str:
    label = area_label(area)
    return f"🏷️ Parece que esto es para *{label}*. ¿Lo envío a {label}? Responde *sí* o *no*."


def format_place_updated(label: str) -> str:
    return f"📍 Lugar actualizado: *{label}*."


def format_version_choice(draft, candidate_text: str) -> str:
    current = draft.descripcion or draft.descripcion_original or "—"
    return (
        "🤔 Esto parece un reporte distinto al que estamos armando:\n\n"
        f"*1. Actual:* {current} | {draft.lugar or '—'} | {area_label(draft.area_destino)}\n"
        f"*2. Nuevo:* {candidate_text}\n\n"
        "¿Con cuál sigo? Responde *primero* o *segundo*."
    )


def format_pending_media_ack(count: int) -> str:
    return f"📎 Foto agregada al reporte ({count})."
