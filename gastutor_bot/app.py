from __future__ import annotations

import asyncio
import logging

from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters

from .config import Settings, get_settings
from .handlers import (
    activate_command,
    button_callback_handler,
    help_command,
    level_command,
    reset_command,
    start_command,
    status_command,
    text_message_handler,
    upgrade_command,
)
from .session_store import session_store
from .storage import KeyValueStorage, MemoryStorage, SqliteStorage, StorageError

logger = logging.getLogger(__name__)


def configure_sessions(settings: Settings) -> None:
    storage: KeyValueStorage
    if settings.storage_path == ":memory:":
        storage = MemoryStorage()
    else:
        try:
            storage = SqliteStorage(settings.storage_path)
        except StorageError:
            logger.warning(
                "Storage at %s is unavailable, entitlements will not survive a restart",
                settings.storage_path,
                exc_info=True,
            )
            storage = MemoryStorage()
    session_store.configure(
        storage=storage,
        policy=settings.policy,
        code_prefix=settings.activation_code_prefix,
    )


def build_application(settings: Settings) -> Application:
    configure_sessions(settings)

    app = Application.builder().token(settings.telegram_bot_token).build()
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("level", level_command))
    app.add_handler(CommandHandler("status", status_command))
    app.add_handler(CommandHandler("activate", activate_command))
    app.add_handler(CommandHandler("upgrade", upgrade_command))
    app.add_handler(CommandHandler("reset", reset_command))
    app.add_handler(CallbackQueryHandler(button_callback_handler))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, text_message_handler))
    return app


def run() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info(
        "Starting %s (free quota %d, tiers %s)",
        settings.bot_name,
        settings.policy.free_quota,
        ", ".join(sorted(tier.value for tier in settings.policy.tiers_enabled)),
    )
    app = build_application(settings)
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())
    app.run_polling(drop_pending_updates=True)
