"""
Reply Templates

Everything the assistant says, in Spanish. Plain strings for fixed
replies, small functions for replies that render data.

Numbers are shown with up to 6 decimals for the native currency and
2 for the local one, thousands separated by commas.
"""

from decimal import ROUND_HALF_UP, Decimal

from coperacha.models.finance import (
    BalanceSummary,
    ContributionReport,
    ProposalHistory,
    ProposalStatus,
    ProposalType,
    SubQueryStatus,
    TransactionDirection,
    WalletDashboard,
)
from coperacha.models.identity import CommunityWalletDraft, WalletCreationResult

EXIT_HINT = '(Puedes escribir "adiós" para salir)'


def format_number(value: Decimal, places: int = 6) -> str:
    """1234.5 -> '1,234.5'; trailing zeros dropped."""
    quantum = Decimal(1).scaleb(-places)
    text = f"{Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP):,f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _money(native: Decimal, local: Decimal, symbol: str, currency: str) -> str:
    return f"{format_number(native)} {symbol} ({format_number(local, 2)} {currency})"


def _short(address: str, length: int = 10) -> str:
    return f"{address[:length]}…" if len(address) > length else address


# =============================================================================
# SESSION
# =============================================================================

EXITED = "👋 ¡Has salido de la conversación! Si deseas volver, solo envía cualquier mensaje."
EXPIRED = (
    "⏳ Tu sesión ha expirado por inactividad. "
    "Si deseas volver a empezar, solo escribe cualquier mensaje."
)

# =============================================================================
# REGISTRATION
# =============================================================================

NOT_REGISTERED = "🔐 No estás registrado en el sistema."
ASK_REGISTRATION = (
    "¿Deseas registrarte? (sí / no)\n"
    'Recuerda: puedes escribir "adiós" en cualquier momento para salir.'
)
REGISTRATION_DECLINED = 'Entendido. Si deseas registrarte más tarde, escribe "registrar".'
YES_NO_REPROMPT = 'Por favor responde "sí" o "no".'

ASK_NAME = f"Perfecto, comencemos. ¿Cuál es tu nombre completo?\n{EXIT_HINT}"
INVALID_NAME = "Por favor envía un nombre válido."


def text_too_long(limit: int) -> str:
    return f"❗ El texto es demasiado largo (máximo {limit:,} caracteres). Envíalo más corto por favor."


ASK_EMAIL = f"Gracias. Ahora, por favor proporciona tu correo electrónico.\n{EXIT_HINT}"
INVALID_EMAIL = (
    "❗ Correo inválido. Ejemplo válido: usuario@dominio.com\n"
    f"Intenta de nuevo.\n{EXIT_HINT}"
)
REASK_EMAIL = f"De acuerdo. Envía nuevamente tu correo electrónico.\n{EXIT_HINT}"


def confirm_email(email: str) -> str:
    return f"📧 Recibí: *{email}*\n¿Confirmas que este es tu correo? (sí / no)\n{EXIT_HINT}"


ASK_WALLET_OPTION = (
    "¿Deseas ingresar la dirección de tu billetera ahora o registrarte en un servicio externo?\n\n"
    "1. Ingresar mi dirección de billetera\n"
    "2. Registrarme y obtener una billetera (te enviaré un link)\n\n"
    f'Responde con "1" o "2".\n{EXIT_HINT}'
)
WALLET_OPTION_REPROMPT = 'Por favor responde con "1" o "2".'
ASK_WALLET_ADDRESS = (
    'Por favor, escribe tu dirección de billetera (debe comenzar con "0x" y tener 42 caracteres).\n'
    f"{EXIT_HINT}"
)


def wallet_register_link(url: str) -> str:
    return (
        f"🔗 Para registrarte y crear tu billetera, visita este enlace:\n👉 {url}\n\n"
        'Cuando la tengas lista, por favor envía aquí tu dirección pública (la que empieza con "0x...").'
    )


INVALID_ADDRESS = '❗ Dirección inválida. Debe comenzar con "0x" y tener 42 caracteres. Inténtalo de nuevo.'


def confirm_wallet(address: str) -> str:
    return f"📬 Recibí la dirección:\n{address}\n¿Confirmas que es correcta? (sí / no)"


REASK_WALLET = (
    "De acuerdo. Envía nuevamente tu dirección de billetera o elige una nueva opción.\n"
    "1. Ingresar dirección\n"
    "2. Registrarme con link"
)


def registration_completed(name: str) -> str:
    return f"🎉 ¡Registro completado, {name}!"


EMAIL_TAKEN = f"❗ Ese correo ya está registrado con otro número. Envía un correo diferente.\n{EXIT_HINT}"
ADDRESS_TAKEN = (
    "❗ Esa billetera ya está registrada por otra persona.\n"
    "1. Ingresar otra dirección\n"
    "2. Registrarme con link"
)
PHONE_TAKEN = "ℹ️ Este número ya estaba registrado. Te llevo al menú."
REGISTRATION_FAILED = (
    "❌ No pude guardar tu registro en este momento. "
    "Intenta de nuevo más tarde enviando cualquier mensaje."
)
SERVICE_UNAVAILABLE = "❌ Tuve un problema consultando nuestros servicios. Intenta de nuevo en un momento."

# =============================================================================
# MAIN MENU
# =============================================================================

MAIN_MENU = (
    "¿Qué puedo hacer por ti hoy?\n"
    "1. Revisar Saldo\n"
    "2. Crear wallet comunitaria\n"
    "3. Wallets comunitarias (ver)\n"
    'Escribe "adiós" en cualquier momento para salir.'
)
MENU_REPROMPT = '❗ Opción no válida. Responde con 1, 2 o 3. También puedes escribir "adiós" para salir.'
ALREADY_REGISTERED = 'Ya estás registrado. Usa el menú con "1", "2" o "3".'
BACK_TO_MENU = 'Regresando al menú principal:\n1 Saldo • 2 Crear wallet comunitaria • 3 Ver comunitarias • "adiós" salir'


def greeting(name: str) -> str:
    return f"¡Hola de nuevo, {name or 'usuario'}!"


NO_ADDRESS = '⚠️ No encuentro tu billetera registrada.\nEscribe "registrar" para registrarte.'
NO_CREATOR_ADDRESS = (
    "⚠️ Necesitas tener una billetera personal registrada para ser el creador. "
    'Escribe "registrar" para completar tu registro.'
)
BALANCE_UNAVAILABLE = "❌ No pude obtener tu saldo en este momento. Intenta de nuevo más tarde."


def balance_summary(summary: BalanceSummary, symbol: str = "ETH", currency: str = "HNL") -> str:
    lines = [
        f"📊 *Saldos para:* {summary.address}",
        "",
        "👤 *Tu wallet*",
        f"• {symbol}: {format_number(summary.personal.native)}",
        f"• {currency}: {format_number(summary.personal.local, 2)}",
        "",
        "👥 *Total comunitario (tus wallets compartidas)*",
        f"• {symbol}: {format_number(summary.community_total.native)}",
        f"• {currency}: {format_number(summary.community_total.local, 2)}",
    ]
    if summary.failed_wallets:
        lines += [
            "",
            "⚠️ No pude consultar estas wallets (no se incluyen en el total):",
            *[f"- {w}" for w in summary.failed_wallets],
        ]
    lines += [
        "",
        "Escribe:",
        '• "2" para crear wallet comunitaria',
        '• "3" para ver tus comunitarias',
        '• "adiós" para salir',
    ]
    return "\n".join(lines)


# =============================================================================
# COMMUNITY WALLET CREATION
# =============================================================================

CREATE_ASK_NAME = (
    "🧩 Vamos a crear tu wallet comunitaria.\n\n"
    '1/3) Escribe el *nombre* de la wallet (ej: "Coperacha Amigos").'
)
CREATE_ASK_DESCRIPTION = '2/3) Escribe una *descripción* (breve). Si no deseas agregarla, escribe "skip".'
CREATE_ASK_MEMBERS = (
    "3/3) Pega las *direcciones de los miembros* (0x...) separadas por *coma*, *espacio* o *nueva línea*.\n"
    "Ejemplo:\n0xabc..., 0xdef..., 0x123...\n\n"
    "(Tú quedas incluido como miembro automáticamente)"
)
NO_VALID_MEMBERS = "❗ No detecté direcciones válidas. Vuelve a enviarlas por favor."
CREATE_CONFIRM_REPROMPT = 'Responde "sí" para crear o "no" para cancelar.'
CREATION_CANCELLED = "Creación cancelada. Volviendo al menú.\n1 Saldo • 2 Crear comunitaria • 3 Ver comunitarias"


def invalid_members(invalid: list[str]) -> str:
    listed = "\n".join(invalid)
    return (
        f"⚠️ Estas direcciones no son válidas:\n{listed}\n\n"
        "Envía nuevamente la lista completa, corrigiendo las inválidas."
    )


def creation_summary(draft: CommunityWalletDraft) -> str:
    members = "\n- ".join(draft.members)
    return (
        "✅ Revisa la configuración:\n\n"
        f"Nombre: {draft.name}\n"
        f"Descripción: {draft.description or '—'}\n"
        f"Creador: {draft.creator}\n"
        f"Miembros ({len(draft.members)}):\n- {members}\n\n"
        "¿Confirmas la creación? (sí / no)"
    )


def wallet_created(result: WalletCreationResult) -> str:
    text = (
        "🎉 *Wallet comunitaria creada con éxito*\n"
        f"• Address: {result.wallet_address}\n"
        f"• Tx: {result.tx_hash}\n\n"
    )
    if result.linked:
        text += "Los miembros registrados ya tienen la wallet asociada.\n"
    else:
        text += (
            "⚠️ La wallet existe, pero no pude asociarla a los miembros en nuestros registros. "
            "Un administrador lo revisará.\n"
        )
    return text + 'Escribe "3" para ver tus comunitarias o "1" para ver saldo.'


def wallet_creation_failed(detail: str) -> str:
    return f"❌ No se pudo crear la wallet comunitaria.\nDetalle: {detail}"


# =============================================================================
# COMMUNITY WALLET BROWSING
# =============================================================================

NO_COMMUNITY_WALLETS = "Aún no perteneces a una wallet comunitaria."
INVALID_WALLET_SELECTION = "Selecciona un número válido de la lista."
MISSING_SELECTION = "No encontré la wallet seleccionada. Envía 3 para listar de nuevo."
SUBMENU_REPROMPT = 'Elige a, b o c. O escribe "menu" para volver.'
DASHBOARD_UNAVAILABLE = "❌ No pude obtener el dashboard ahora."
CONTRIBUTIONS_UNSUPPORTED = (
    "⚠️ Esta función no está habilitada en el nodo. "
    "Contacta al admin para activarla."
)
CONTRIBUTIONS_UNAVAILABLE = "❌ No pude obtener los aportes ahora."
NO_CONTRIBUTIONS = "No hay aportes registrados aún."
HISTORY_UNAVAILABLE = "❌ No pude obtener el historial ahora."


def wallet_list(wallets: list[str]) -> str:
    menu = "\n".join(f"{i}. {w}" for i, w in enumerate(wallets, start=1))
    return (
        f"Estas son tus wallets comunitarias:\n{menu}\n\n"
        "Envía el número de la wallet que quieres consultar."
    )


def wallet_selected(wallet_address: str) -> str:
    return (
        f"Has seleccionado:\n{wallet_address}\n\n"
        "Opciones:\n"
        "a) Dashboard resumido\n"
        "b) Aportes por persona\n"
        "c) Propuestas + últimas tx\n\n"
        "Escribe a, b o c."
    )


def _section_note(status: SubQueryStatus) -> str:
    if status == SubQueryStatus.UNSUPPORTED:
        return " (no disponible en el nodo)"
    if status == SubQueryStatus.FAILED:
        return " (no disponible ahora)"
    return ""


_TYPE_LABELS = {
    ProposalType.EXPENSE: "GASTO",
    ProposalType.MEMBERSHIP_CHANGE: "MIEMBRO",
}
_STATUS_LABELS = {
    ProposalStatus.PENDING: "Pendiente",
    ProposalStatus.EXECUTED: "Ejecutada",
    ProposalStatus.EXPIRED: "Expirada",
}
_DIRECTION_LABELS = {
    TransactionDirection.INCOMING: "INGRESO",
    TransactionDirection.OUTGOING: "SALIDA",
}


def _transaction_lines(transactions, symbol: str) -> list[str]:
    return [
        f"{_DIRECTION_LABELS[t.direction]} • {format_number(t.amount.native)} {symbol} • "
        f"{t.age} • {_short(t.hash)}"
        for t in transactions
    ]


def dashboard(view: WalletDashboard, symbol: str = "ETH", currency: str = "HNL") -> str:
    balance = view.balance.value
    counts = view.proposals.value
    members = view.members.value or []

    lines = [
        f"📊 *Dashboard* ({view.wallet_address})",
        "",
        f"💰 Saldo: {_money(balance.native, balance.local, symbol, currency)}"
        f"{_section_note(view.balance.status)}",
        f"👥 Miembros: {len(members)}{_section_note(view.members.status)}",
        f"🗳️ Propuestas: total {counts.total} • pend {counts.pending} • "
        f"ejec {counts.executed} • exp {counts.expired}{_section_note(view.proposals.status)}",
        "",
        f"🏅 *Top aportes*{_section_note(view.top_contributors.status)}",
    ]
    contributors = view.top_contributors.value or []
    lines += [
        f"#{i} {_short(c.address)} • {_money(c.total.native, c.total.local, symbol, currency)}"
        for i, c in enumerate(contributors, start=1)
    ] or ["—"]

    lines += ["", f"🔁 *Últimas tx*{_section_note(view.recent_transactions.status)}"]
    lines += _transaction_lines(view.recent_transactions.value or [], symbol) or ["—"]
    lines += ["", 'b) Ver aportes • c) Ver propuestas • "menu" para volver']
    return "\n".join(lines)


def contributions(
    report: ContributionReport,
    limit: int = 10,
    symbol: str = "ETH",
    currency: str = "HNL",
) -> str:
    lines = [
        f"#{i} {_short(c.address)} • {_money(c.total.native, c.total.local, symbol, currency)}"
        for i, c in enumerate(report.contributions[:limit], start=1)
    ]
    body = "\n".join(lines)
    return f"🏅 *Top aportes* ({report.wallet_address})\n\n{body}\n\nc) Ver propuestas • \"menu\" volver"


def proposal_history(
    history: ProposalHistory,
    symbol: str = "ETH",
    limit: int = 5,
) -> str:
    proposals = history.proposals.value or []
    proposal_lines = [
        f"#{p.id} • {_TYPE_LABELS[p.type]} • {format_number(p.amount.native)} {symbol} • "
        f"conf {p.confirmations} • {_STATUS_LABELS[p.status]}"
        for p in proposals[:limit]
    ] or ["—"]
    transaction_lines = _transaction_lines(history.recent_transactions.value or [], symbol) or ["—"]

    return "\n".join([
        f"📑 *Propuestas* ({history.wallet_address}){_section_note(history.proposals.status)}",
        *proposal_lines,
        "",
        f"🔁 *Últimas tx*{_section_note(history.recent_transactions.status)}",
        *transaction_lines,
        "",
        '"menu" para volver',
    ])
