from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from telegram.constants import ParseMode
from telegram.error import BadRequest

from gastutor_bot import handlers
from gastutor_bot.composer import search_fallback, upsell_footer
from gastutor_bot.content import PPE_ANSWER
from gastutor_bot.models import EntitlementPolicy, Level, Tier
from gastutor_bot.session_store import session_store
from gastutor_bot.storage import MemoryStorage


@pytest.fixture(autouse=True)
def fresh_sessions():
    session_store.configure(storage=MemoryStorage(), policy=EntitlementPolicy())
    yield
    session_store.configure(storage=MemoryStorage(), policy=EntitlementPolicy())


def _update(text: str = "", user_id: int = 42):
    message = SimpleNamespace(text=text, reply_text=AsyncMock())
    return SimpleNamespace(
        message=message,
        callback_query=None,
        effective_user=SimpleNamespace(id=user_id, username="student"),
    )


def _context(*args: str):
    return SimpleNamespace(args=list(args))


def _replies(update) -> list[str]:
    return [call.args[0] for call in update.message.reply_text.await_args_list]


@pytest.mark.asyncio
async def test_question_without_level_prompts_for_level() -> None:
    update = _update("what ppe is required")
    await handlers.text_message_handler(update, _context())
    assert _replies(update) == ["Choose your certification level first:"]
    assert session_store.entitlement(42).messages_used == 0


@pytest.mark.asyncio
async def test_question_is_answered_and_counted() -> None:
    session_store.get(42).level = Level.G2
    update = _update("what ppe is required")
    await handlers.text_message_handler(update, _context())
    [answer] = _replies(update)
    assert answer.startswith("<b>Personal Protective Equipment (PPE) Requirements</b>")
    assert "**" not in answer and "##" not in answer
    assert update.message.reply_text.await_args.kwargs["parse_mode"] == ParseMode.HTML
    assert session_store.entitlement(42).messages_used == 1
    assert session_store.get(42).questions_asked == 1


@pytest.mark.asyncio
async def test_answer_carries_expiring_notice() -> None:
    purchased_at = datetime.now(UTC) - timedelta(days=27)
    session_store.configure(
        storage=MemoryStorage({"user:42:pro-purchase-date": purchased_at.isoformat()}),
        policy=EntitlementPolicy(),
    )
    session_store.get(42).level = Level.G3
    update = _update("venting")
    await handlers.text_message_handler(update, _context())
    [answer] = _replies(update)
    assert "Your access expires in 3 days" in answer
    assert session_store.entitlement(42).tier is Tier.PAID
    assert session_store.entitlement(42).messages_used == 0


@pytest.mark.asyncio
async def test_level_command_sets_level() -> None:
    update = _update("/level g3")
    await handlers.level_command(update, _context("g3"))
    assert session_store.get(42).level is Level.G3
    assert _replies(update)[0].startswith("Welcome to your G3 Gas Technician Tutor!")


@pytest.mark.asyncio
async def test_level_command_rejects_unknown_level() -> None:
    update = _update("/level g1")
    await handlers.level_command(update, _context("g1"))
    assert session_store.get(42).level is None
    assert "Invalid level" in _replies(update)[0]


@pytest.mark.asyncio
async def test_activate_command_success_and_failure() -> None:
    bad = _update("/activate LARK0081")
    await handlers.activate_command(bad, _context("LARK0081"))
    assert "Invalid activation code" in _replies(bad)[0]
    assert session_store.entitlement(42).tier is Tier.FREE

    good = _update("/activate LARK0001")
    await handlers.activate_command(good, _context("LARK0001"))
    assert "active for 365 days" in _replies(good)[0]
    assert session_store.entitlement(42).tier is Tier.ACTIVATED


@pytest.mark.asyncio
async def test_activate_command_without_code_shows_usage() -> None:
    update = _update("/activate")
    await handlers.activate_command(update, _context())
    assert _replies(update) == ["Usage: /activate CODE"]


@pytest.mark.asyncio
async def test_activate_unavailable_in_fully_free_variant() -> None:
    session_store.configure(storage=MemoryStorage(), policy=EntitlementPolicy.fully_free())
    update = _update("/activate LARK0001")
    await handlers.activate_command(update, _context("LARK0001"))
    assert "not available" in _replies(update)[0]


@pytest.mark.asyncio
async def test_status_reports_quota_usage() -> None:
    session_store.entitlement(42).increment_message_count()
    update = _update("/status")
    await handlers.status_command(update, _context())
    text = _replies(update)[0]
    assert "- Access: Free Access" in text
    assert "- Messages used: 1/10" in text
    assert "- AI access: ✅" in text


@pytest.mark.asyncio
async def test_status_button_text_routes_to_status() -> None:
    session_store.entitlement(42).redeem_code("LARK0009")
    update = _update(handlers.BUTTON_LABELS["status"])
    await handlers.text_message_handler(update, _context())
    text = _replies(update)[0]
    assert "- Access: Student Activation" in text
    assert "- Activation code: LARK0009" in text
    assert "- Activation days remaining: 365" in text
    assert session_store.entitlement(42).messages_used == 0


@pytest.mark.asyncio
async def test_start_with_new_purchase_runs_onboarding() -> None:
    update = _update("/start pro-new")
    await handlers.start_command(update, _context("pro-new"))
    replies = _replies(update)
    assert len(replies) == 2
    assert "Thank you for upgrading" in replies[0]
    assert session_store.entitlement(42).tier is Tier.PAID


@pytest.mark.asyncio
async def test_start_with_returning_purchase_skips_onboarding() -> None:
    update = _update("/start pro-returning")
    await handlers.start_command(update, _context("pro-returning"))
    replies = _replies(update)
    assert "Welcome back" in replies[0]
    assert all("Thank you for upgrading" not in reply for reply in replies)
    assert session_store.entitlement(42).tier is Tier.PAID


@pytest.mark.asyncio
async def test_repeated_purchase_signal_restarts_paid_window() -> None:
    purchased_at = datetime.now(UTC) - timedelta(days=20)
    session_store.configure(
        storage=MemoryStorage({"user:42:pro-purchase-date": purchased_at.isoformat()}),
        policy=EntitlementPolicy(),
    )
    assert session_store.entitlement(42).days_remaining == 10
    await handlers.start_command(_update("/start pro-new"), _context("pro-new"))
    assert session_store.entitlement(42).tier is Tier.PAID
    assert session_store.entitlement(42).days_remaining == 30


@pytest.mark.asyncio
async def test_plain_start_leaves_entitlement_alone() -> None:
    update = _update("/start")
    await handlers.start_command(update, _context())
    assert len(_replies(update)) == 1
    assert session_store.entitlement(42).tier is Tier.FREE


@pytest.mark.asyncio
async def test_reset_command_clears_session() -> None:
    session_store.get(42).level = Level.G2
    session_store.entitlement(42).increment_message_count()
    update = _update(handlers.BUTTON_LABELS["reset"])
    await handlers.text_message_handler(update, _context())
    assert session_store.get(42).level is None
    assert session_store.entitlement(42).messages_used == 0


@pytest.mark.asyncio
async def test_level_callback_sets_level() -> None:
    query = SimpleNamespace(data="set:level:G2", answer=AsyncMock(), message=None)
    update = SimpleNamespace(
        message=None,
        callback_query=query,
        effective_user=SimpleNamespace(id=42, username="student"),
    )
    await handlers.button_callback_handler(update, _context())
    query.answer.assert_awaited_once()
    assert session_store.get(42).level is Level.G2


def test_telegram_html_renders_answer_markup() -> None:
    rendered = handlers._telegram_html(f"{PPE_ANSWER}\n\n{upsell_footer('https://example.com/pro?a=1&b=2')}")
    assert rendered.startswith("<b>Personal Protective Equipment (PPE) Requirements</b>\n\n<b>Unit 1 - Safety</b> covers")
    assert "<b>Eye protection</b>" in rendered
    assert "OH&amp;S" in rendered
    assert '<a href="https://example.com/pro?a=1&amp;b=2"><b>Upgrade to Pro - $9.99/month</b></a>' in rendered
    assert "---" not in rendered
    assert "**" not in rendered


def test_telegram_html_escapes_user_text_and_renders_italics() -> None:
    rendered = handlers._telegram_html(search_fallback("<script> venting"))
    assert "<i>&lt;script&gt; venting</i>" in rendered
    assert "<script>" not in rendered
    assert handlers._telegram_html("_+2 more related units not shown._") == "<i>+2 more related units not shown.</i>"
    assert handlers._telegram_html("snake_case_name stays") == "snake_case_name stays"


@pytest.mark.asyncio
async def test_rejected_formatting_falls_back_to_plain_text() -> None:
    session_store.get(42).level = Level.G2
    update = _update("what ppe is required")
    update.message.reply_text.side_effect = [BadRequest("Can't parse entities"), None]
    await handlers.text_message_handler(update, _context())
    first, second = update.message.reply_text.await_args_list
    assert first.kwargs["parse_mode"] == ParseMode.HTML
    assert second.args[0].startswith(PPE_ANSWER)
    assert "parse_mode" not in second.kwargs
