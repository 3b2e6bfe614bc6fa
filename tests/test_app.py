import logging

from telegram.ext import CallbackQueryHandler, CommandHandler, MessageHandler

from gastutor_bot.app import build_application, configure_sessions
from gastutor_bot.config import Settings
from gastutor_bot.models import EntitlementPolicy, Tier
from gastutor_bot.session_store import session_store
from gastutor_bot.storage import MemoryStorage


def teardown_function() -> None:
    session_store.configure(storage=MemoryStorage(), policy=EntitlementPolicy())


def test_configure_sessions_applies_policy_and_prefix() -> None:
    settings = Settings(
        telegram_bot_token="123:abc",
        policy=EntitlementPolicy(free_quota=3, tiers_enabled=frozenset({Tier.FREE, Tier.ACTIVATED})),
        activation_code_prefix="GAS",
        storage_path=":memory:",
    )
    configure_sessions(settings)
    entitlement = session_store.entitlement(1)
    assert entitlement.policy.free_quota == 3
    assert entitlement.redeem_code("GAS0002").ok
    assert entitlement.confirm_purchase() is False


def test_configure_sessions_uses_sqlite_file(tmp_path) -> None:
    db_path = tmp_path / "state.db"
    configure_sessions(Settings(telegram_bot_token="123:abc", storage_path=str(db_path)))
    session_store.entitlement(9).confirm_purchase()
    assert db_path.exists()

    configure_sessions(Settings(telegram_bot_token="123:abc", storage_path=str(db_path)))
    assert session_store.entitlement(9).tier is Tier.PAID


def test_configure_sessions_falls_back_to_memory_when_storage_fails(tmp_path, caplog) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    with caplog.at_level(logging.WARNING, logger="gastutor_bot.app"):
        configure_sessions(Settings(telegram_bot_token="123:abc", storage_path=str(blocker / "state.db")))
    assert "unavailable" in caplog.text
    assert isinstance(session_store._storage, MemoryStorage)  # noqa: SLF001
    entitlement = session_store.entitlement(5)
    assert entitlement.confirm_purchase() is True
    assert entitlement.tier is Tier.PAID


def test_build_application_registers_handlers() -> None:
    app = build_application(Settings(telegram_bot_token="123:abc", storage_path=":memory:"))
    registered = app.handlers[0]
    commands = set()
    for handler in registered:
        if isinstance(handler, CommandHandler):
            commands.update(handler.commands)
    assert commands == {"start", "help", "level", "status", "activate", "upgrade", "reset"}
    assert any(isinstance(handler, CallbackQueryHandler) for handler in registered)
    assert any(isinstance(handler, MessageHandler) for handler in registered)
