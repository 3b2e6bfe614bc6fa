from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union


class Level(str, Enum):
    G3 = "G3"
    G2 = "G2"


class UnitLevel(str, Enum):
    G3 = "G3"
    G2 = "G2"
    BOTH = "Both"


class Tier(str, Enum):
    FREE = "free"
    PAID = "paid"
    ACTIVATED = "activated"


@dataclass(frozen=True)
class Unit:
    number: int
    title: str
    level: UnitLevel

    def visible_to(self, level: Level) -> bool:
        if self.level is UnitLevel.BOTH:
            return True
        return self.level.value == level.value


@dataclass(frozen=True)
class TopicRule:
    keyword: str
    units: Tuple[int, ...]


@dataclass(frozen=True)
class ExactAnswer:
    trigger: str
    body: str


@dataclass(frozen=True)
class ExactAnswerResult:
    text: str


@dataclass(frozen=True)
class UnitsResult:
    units: Tuple[Unit, ...]


@dataclass(frozen=True)
class NoMatch:
    pass


ResolutionResult = Union[ExactAnswerResult, UnitsResult, NoMatch]


@dataclass(frozen=True)
class EntitlementPolicy:
    """Which tiers ship and how many free messages a session gets.

    The metered product allows 10 free messages and all three tiers. The fully
    free product disables paid access entirely: quota 0, only ``Tier.FREE``.
    """

    free_quota: int = 10
    tiers_enabled: FrozenSet[Tier] = field(
        default_factory=lambda: frozenset({Tier.FREE, Tier.PAID, Tier.ACTIVATED})
    )

    @classmethod
    def fully_free(cls) -> "EntitlementPolicy":
        return cls(free_quota=0, tiers_enabled=frozenset({Tier.FREE}))


@dataclass(frozen=True)
class EntitlementStatus:
    tier: Tier
    has_access: bool
    messages_used: int
    message_limit: int
    days_remaining: int
    is_expiring_soon: bool


@dataclass
class UserSession:
    user_id: int
    level: Optional[Level] = None
    questions_asked: int = 0
