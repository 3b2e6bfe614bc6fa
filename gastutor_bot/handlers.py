from __future__ import annotations

import html
import logging
import re
from typing import Optional, Set

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.constants import ParseMode
from telegram.error import BadRequest
from telegram.ext import ContextTypes

from .composer import AnswerComposer, ask_question
from .config import get_bot_name, get_pro_upgrade_url
from .entitlements import EntitlementStore, RedeemResult
from .models import EntitlementStatus, Level, Tier, UserSession
from .session_store import session_store

logger = logging.getLogger(__name__)

BUTTON_LABELS = {
    "level": "📚 Level",
    "status": "📊 Status",
    "upgrade": "⭐ Upgrade",
    "help": "ℹ️ Help",
    "reset": "🔄 Reset",
}

CB_ACTION_STATUS = "act:status"
CB_ACTION_LEVEL = "act:level"
CB_SET_LEVEL_PREFIX = "set:level:"

ENTRY_NEW_PURCHASE = "pro-new"
ENTRY_RETURNING_PURCHASE = "pro-returning"

EMOJI_TRUE = "✅"
EMOJI_FALSE = "❌"
EMOJI_WARNING = "⚠️"

_MD_RULE = re.compile(r"^-{3,}\s*$", re.MULTILINE)
_MD_HEADING = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_MD_BOLD = re.compile(r"\*\*(.+?)\*\*")
_MD_LINK = re.compile(r"\[([^\]\n]+)\]\((https?://[^)\s]+)\)")
_MD_ITALIC_STAR = re.compile(r"(?<![\w*])\*(\S(?:[^*\n]*\S)?)\*(?![\w*])")
_MD_ITALIC_UNDERSCORE = re.compile(r"(?<!\w)_(\S(?:[^_\n]*\S)?)_(?!\w)")

_COMPOSER: Optional[AnswerComposer] = None


def _get_composer() -> AnswerComposer:
    global _COMPOSER
    if _COMPOSER is None:
        _COMPOSER = AnswerComposer(upgrade_url=get_pro_upgrade_url())
    return _COMPOSER


def _get_session(update: Update) -> Optional[UserSession]:
    user = update.effective_user
    if user is None:
        return None
    return session_store.get(user.id)


def _get_entitlement(update: Update) -> Optional[EntitlementStore]:
    user = update.effective_user
    if user is None:
        return None
    return session_store.entitlement(user.id)


def _active_message(update: Update) -> Optional[Message]:
    if update.message is not None:
        return update.message
    if update.callback_query is not None and isinstance(update.callback_query.message, Message):
        return update.callback_query.message
    return None


def _bool_emoji(value: bool) -> str:
    return EMOJI_TRUE if value else EMOJI_FALSE


def _button_variants(key: str) -> Set[str]:
    label = BUTTON_LABELS.get(key, key)
    return {label, label.split(" ", 1)[-1]}


def _parse_level(value: str) -> Optional[Level]:
    try:
        return Level(value.strip().upper())
    except ValueError:
        return None


def _tier_label(tier: Tier) -> str:
    return {
        Tier.FREE: "Free Access",
        Tier.PAID: "AI Tutor Pro",
        Tier.ACTIVATED: "Student Activation",
    }[tier]


def _commands_text() -> str:
    return (
        "Commands:\n"
        "/level - choose G3 or G2 certification\n"
        "/status - show your access and message usage\n"
        "/activate CODE - redeem a student activation code\n"
        "/upgrade - get AI Tutor Pro\n"
        "/reset - start a fresh session\n"
        "/help - show this help\n\n"
        "Or just type a question about gas codes, safety or certification."
    )


def _welcome_text(level: Level) -> str:
    if level is Level.G3:
        base = (
            "Welcome to your G3 Gas Technician Tutor! This free version provides access to complete "
            "CSA B149.1-25 training content, code references, and study materials for G3 certification "
            "preparation covering natural gas appliances up to 400,000 BTU/hr, safety protocols, and "
            "code requirements from Units 1-9."
        )
    else:
        base = (
            "Welcome to your G2 Gas Technician Tutor! This free version provides access to complete "
            "CSA B149.1-25 and B149.2-25 training content, code references, and study materials for G2 "
            "certification preparation covering all gas appliances, advanced installations, commercial "
            "systems, and complex scenarios from Units 10-24."
        )
    return (
        f"{base}\n\n"
        "Free Version Features:\n"
        "• Complete CSA training content access\n"
        "• Code references and examples\n"
        "• Study materials and guides\n\n"
        "Upgrade to AI Tutor Pro for:\n"
        "• Unlimited AI explanations and tutoring\n"
        "• Interactive Q&A sessions\n"
        "• Personalized learning paths\n\n"
        f"Upgrade to Pro - $9.99/month: {get_pro_upgrade_url()}"
    )


def _onboarding_text() -> str:
    return (
        f"{EMOJI_TRUE} Thank you for upgrading to AI Tutor Pro!\n\n"
        "Your Pro access is active for 30 days. Here is how to get the most out of it:\n"
        "1. Pick your certification with /level\n"
        "2. Ask questions in your own words, as often as you like\n"
        "3. Check your remaining days any time with /status"
    )


def _status_text(status: EntitlementStatus, activation_code: Optional[str] = None) -> str:
    lines = ["Subscription Status", f"- Access: {_tier_label(status.tier)}"]
    if status.tier is Tier.FREE:
        lines.append("- CSA content available, AI features require Pro upgrade")
        if status.message_limit > 0:
            lines.append(f"- Messages used: {status.messages_used}/{status.message_limit}")
    elif status.tier is Tier.PAID:
        lines.append(f"- Pro days remaining: {status.days_remaining}")
    else:
        if activation_code:
            lines.append(f"- Activation code: {activation_code}")
        lines.append(f"- Activation days remaining: {status.days_remaining}")
    lines.append(f"- AI access: {_bool_emoji(status.has_access)}")
    if status.is_expiring_soon:
        lines.append("")
        lines.append(_expiring_notice(status.days_remaining))
    return "\n".join(lines)


def _expiring_notice(days: int) -> str:
    plural = "s" if days != 1 else ""
    return f"{EMOJI_WARNING} Your access expires in {days} day{plural}. Renew with /upgrade to keep AI features."


def _telegram_html(document: str) -> str:
    """Render a composer markdown document as Telegram HTML."""
    text = html.escape(document)
    text = _MD_RULE.sub("", text)
    text = _MD_HEADING.sub(r"<b>\1</b>", text)
    text = _MD_BOLD.sub(r"<b>\1</b>", text)
    text = _MD_LINK.sub(r'<a href="\2">\1</a>', text)
    text = _MD_ITALIC_STAR.sub(r"<i>\1</i>", text)
    text = _MD_ITALIC_UNDERSCORE.sub(r"<i>\1</i>", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _main_reply_keyboard() -> ReplyKeyboardMarkup:
    keyboard = [
        [BUTTON_LABELS["level"], BUTTON_LABELS["status"]],
        [BUTTON_LABELS["upgrade"], BUTTON_LABELS["help"]],
        [BUTTON_LABELS["reset"]],
    ]
    return ReplyKeyboardMarkup(
        keyboard,
        resize_keyboard=True,
        one_time_keyboard=False,
        is_persistent=True,
    )


def _level_selection_keyboard(session: UserSession) -> InlineKeyboardMarkup:
    rows = []
    for level in Level:
        marker = _bool_emoji(session.level is level)
        rows.append(
            [
                InlineKeyboardButton(
                    f"{marker} {level.value} Gas Technician",
                    callback_data=f"{CB_SET_LEVEL_PREFIX}{level.value}",
                )
            ]
        )
    rows.append([InlineKeyboardButton(BUTTON_LABELS["status"], callback_data=CB_ACTION_STATUS)])
    return InlineKeyboardMarkup(rows)


async def _reply(update: Update, text: str, reply_markup=None) -> None:
    message = _active_message(update)
    if message is None:
        return
    await message.reply_text(text, reply_markup=reply_markup)


async def _reply_document(update: Update, document: str, reply_markup=None) -> None:
    message = _active_message(update)
    if message is None:
        return
    try:
        await message.reply_text(_telegram_html(document), parse_mode=ParseMode.HTML, reply_markup=reply_markup)
    except BadRequest:
        logger.warning("Telegram rejected the formatted answer, sending it as plain text", exc_info=True)
        await message.reply_text(document, reply_markup=reply_markup)


async def _edit_or_reply(update: Update, text: str, reply_markup=None) -> None:
    query = update.callback_query
    if query is None or not isinstance(query.message, Message):
        await _reply(update, text, reply_markup=reply_markup)
        return
    try:
        await query.edit_message_text(text, reply_markup=reply_markup)
    except BadRequest:
        await query.message.reply_text(text, reply_markup=reply_markup)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _get_session(update)
    entitlement = _get_entitlement(update)
    message = _active_message(update)
    if session is None or entitlement is None or message is None:
        return

    signal = context.args[0].strip().lower() if context.args else ""
    if signal in {ENTRY_NEW_PURCHASE, ENTRY_RETURNING_PURCHASE}:
        if entitlement.confirm_purchase():
            if signal == ENTRY_NEW_PURCHASE:
                await message.reply_text(_onboarding_text(), reply_markup=_main_reply_keyboard())
            else:
                await message.reply_text(
                    f"{EMOJI_TRUE} Welcome back! Your Pro access has been renewed.",
                    reply_markup=_main_reply_keyboard(),
                )

    intro = (
        f"Welcome to {get_bot_name()}.\n\n"
        "Ask questions about CSA B149.1-25 and B149.2-25, gas safety, piping, venting "
        "and appliances. Answers come from the G3 and G2 training units.\n\n"
        "Choose your certification level to start."
    )
    await message.reply_text(intro, reply_markup=_level_selection_keyboard(session))


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _reply(update, _commands_text(), reply_markup=_main_reply_keyboard())


async def level_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _get_session(update)
    if session is None:
        return
    if context.args:
        level = _parse_level(context.args[0])
        if level is None:
            await _reply(update, f"{EMOJI_FALSE} Invalid level. Available values: G3 | G2.")
            return
        session.level = level
        await _reply(update, _welcome_text(level), reply_markup=_main_reply_keyboard())
        return
    await _reply(update, "Choose your certification level:", reply_markup=_level_selection_keyboard(session))


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    entitlement = _get_entitlement(update)
    if entitlement is None:
        return
    text = _status_text(entitlement.get_status(), entitlement.activation_code)
    await _reply(update, text, reply_markup=_main_reply_keyboard())


async def activate_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    entitlement = _get_entitlement(update)
    if entitlement is None:
        return
    if not context.args:
        await _reply(update, "Usage: /activate CODE")
        return

    result = entitlement.redeem_code(context.args[0])
    if result is RedeemResult.SUCCESS:
        text = (
            f"{EMOJI_TRUE} Student activation successful.\n"
            f"Your access is active for {entitlement.days_remaining} days."
        )
    elif result is RedeemResult.UNAVAILABLE:
        text = f"{EMOJI_FALSE} Student activation is not available in this version."
    else:
        text = f"{EMOJI_FALSE} Invalid activation code. Check the code and try again."
    await _reply(update, text, reply_markup=_main_reply_keyboard())


async def upgrade_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    text = (
        "Unlock AI-Powered Learning\n\n"
        "Get unlimited AI explanations, personalized tutoring, and advanced study features. "
        "Complete CSA training with intelligent assistance - upgrade to Pro for just $9.99/month.\n\n"
        f"Upgrade to Pro: {get_pro_upgrade_url()}"
    )
    await _reply(update, text, reply_markup=_main_reply_keyboard())


async def reset_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_user is None:
        return
    session = session_store.reset(update.effective_user.id)
    await _reply(
        update,
        f"{EMOJI_TRUE} Session has been reset. Choose your certification level to begin again.",
        reply_markup=_level_selection_keyboard(session),
    )


async def button_callback_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None:
        return
    await query.answer()

    session = _get_session(update)
    if session is None:
        return
    data = query.data or ""

    if data.startswith(CB_SET_LEVEL_PREFIX):
        level = _parse_level(data[len(CB_SET_LEVEL_PREFIX):])
        if level is None:
            return
        session.level = level
        await _edit_or_reply(update, _welcome_text(level))
        return
    if data == CB_ACTION_LEVEL:
        await _edit_or_reply(update, "Choose your certification level:", reply_markup=_level_selection_keyboard(session))
        return
    if data == CB_ACTION_STATUS:
        entitlement = session_store.entitlement(session.user_id)
        await _edit_or_reply(
            update,
            _status_text(entitlement.get_status(), entitlement.activation_code),
            reply_markup=InlineKeyboardMarkup(
                [[InlineKeyboardButton(BUTTON_LABELS["level"], callback_data=CB_ACTION_LEVEL)]]
            ),
        )
        return
    logger.debug("Ignoring unknown callback data %r", data)


async def text_message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.message is None or not update.message.text:
        return

    session = _get_session(update)
    entitlement = _get_entitlement(update)
    if session is None or entitlement is None:
        return

    text = update.message.text.strip()

    if text in _button_variants("level"):
        await level_command(update, context)
        return
    if text in _button_variants("status"):
        await status_command(update, context)
        return
    if text in _button_variants("upgrade"):
        await upgrade_command(update, context)
        return
    if text in _button_variants("help"):
        await help_command(update, context)
        return
    if text in _button_variants("reset"):
        await reset_command(update, context)
        return

    if session.level is None:
        await _reply(
            update,
            "Choose your certification level first:",
            reply_markup=_level_selection_keyboard(session),
        )
        return

    status = entitlement.get_status()
    answer = ask_question(text, session.level, answer_composer=_get_composer())
    entitlement.increment_message_count()
    session.questions_asked += 1

    if status.is_expiring_soon:
        answer = f"{answer}\n\n{_expiring_notice(status.days_remaining)}"
    await _reply_document(update, answer, reply_markup=_main_reply_keyboard())
