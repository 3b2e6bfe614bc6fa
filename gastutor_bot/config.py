from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet

from dotenv import load_dotenv

from .composer import DEFAULT_UPGRADE_URL
from .entitlements import DEFAULT_CODE_PREFIX
from .models import EntitlementPolicy, Tier

load_dotenv()


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    bot_name: str = "Gas Tech Tutor"
    policy: EntitlementPolicy = field(default_factory=EntitlementPolicy)
    activation_code_prefix: str = DEFAULT_CODE_PREFIX
    pro_upgrade_url: str = DEFAULT_UPGRADE_URL
    storage_path: str = "gastutor.db"
    log_level: str = "INFO"


def get_settings() -> Settings:
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    if not token:
        raise RuntimeError(
            "Missing TELEGRAM_BOT_TOKEN. Add it to your environment or a .env file."
        )
    return Settings(
        telegram_bot_token=token,
        bot_name=get_bot_name(),
        policy=get_entitlement_policy(),
        activation_code_prefix=get_activation_code_prefix(),
        pro_upgrade_url=get_pro_upgrade_url(),
        storage_path=get_storage_path(),
        log_level=get_log_level(),
    )


def get_bot_name() -> str:
    name = os.getenv("BOT_NAME", "Gas Tech Tutor").strip()
    return name or "Gas Tech Tutor"


def get_free_message_limit() -> int:
    raw = os.getenv("FREE_MESSAGE_LIMIT", "10").strip()
    try:
        value = int(raw)
    except ValueError:
        return 10
    return max(0, min(value, 1000))


def get_tiers_enabled() -> FrozenSet[Tier]:
    raw = os.getenv("TIERS_ENABLED", "free,paid,activated")
    tiers = {Tier.FREE}
    for item in raw.split(","):
        name = item.strip().lower()
        if name in {tier.value for tier in Tier}:
            tiers.add(Tier(name))
    return frozenset(tiers)


def get_entitlement_policy() -> EntitlementPolicy:
    return EntitlementPolicy(
        free_quota=get_free_message_limit(),
        tiers_enabled=get_tiers_enabled(),
    )


def get_activation_code_prefix() -> str:
    prefix = os.getenv("ACTIVATION_CODE_PREFIX", DEFAULT_CODE_PREFIX).strip().upper()
    return prefix or DEFAULT_CODE_PREFIX


def get_pro_upgrade_url() -> str:
    url = os.getenv("PRO_UPGRADE_URL", DEFAULT_UPGRADE_URL).strip()
    return url or DEFAULT_UPGRADE_URL


def get_storage_path() -> str:
    path = os.getenv("STORAGE_PATH", "gastutor.db").strip()
    return path or "gastutor.db"


def get_log_level() -> str:
    level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        return "INFO"
    return level
