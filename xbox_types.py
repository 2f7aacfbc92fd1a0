"""
Xbox Achievements Tracker - Data Model
======================================
Tokens, identities, games, achievements and the helpers that order and count
achievement lists.
"""

import random
from dataclasses import dataclass, field

from xbox_codec import now

# Tokens are treated as expired this many seconds before their NotAfter.
EXPIRY_MARGIN = 15 * 60


@dataclass
class Token:
    value: str
    expires: int = 0  # 0 = unknown / non-expiring

    def is_expired(self, at=None):
        if at is None:
            at = now()
        return at >= self.expires - EXPIRY_MARGIN


@dataclass
class Device:
    uuid: str
    serial_number: str
    signer: object  # xbox_crypto.RequestSigner


@dataclass
class Identity:
    gamertag: str
    xid: str
    uhs: str
    token: Token

    @property
    def authorization(self):
        return f"XBL3.0 x={self.uhs};{self.token.value}"


@dataclass
class Game:
    id: str
    title: str


@dataclass
class Reward:
    value: str


@dataclass
class MediaAsset:
    url: str


@dataclass
class Achievement:
    id: str
    service_config_id: str = ""
    name: str = ""
    description: str = ""
    locked_description: str = ""
    progress_state: str = ""
    icon_url: str = ""
    is_secret: bool = False
    unlocked_timestamp: int = 0
    rewards: list = field(default_factory=list)
    media_assets: list = field(default_factory=list)

    @property
    def is_unlocked(self):
        return self.unlocked_timestamp > 0


@dataclass
class AchievementProgress:
    service_config_id: str
    id: str
    progress_state: str
    unlocked_timestamp: int = 0


@dataclass
class UnlockedAchievement:
    id: str
    value: int


@dataclass
class Gamerscore:
    base_value: int = 0
    unlocked_achievements: list = field(default_factory=list)

    def compute(self):
        return self.base_value + sum(a.value for a in self.unlocked_achievements)


# ---------------------------------------------------------------------------
# Achievement list helpers
# ---------------------------------------------------------------------------

def sort_achievements(achievements):
    """Unlocked first (newest unlock first), then locked in input order.

    Returns a new list; Python's sort is stable so ties keep input order.
    """
    return sorted(
        achievements,
        key=lambda a: (0, -a.unlocked_timestamp) if a.is_unlocked else (1, 0))


def find_achievement(achievements, achievement_id):
    """Case-insensitive lookup by id."""
    wanted = (achievement_id or "").lower()
    for a in achievements:
        if a.id.lower() == wanted:
            return a
    return None


def find_latest_unlocked(achievements):
    latest = None
    for a in achievements:
        if a.is_unlocked and (latest is None or a.unlocked_timestamp > latest.unlocked_timestamp):
            latest = a
    return latest


def count_unlocked(achievements):
    return sum(1 for a in achievements if a.is_unlocked)


def count_locked(achievements):
    return sum(1 for a in achievements if not a.is_unlocked)


def random_locked(achievements, rng=random):
    """Pick a random locked achievement, or None if everything is unlocked."""
    locked = [a for a in achievements if not a.is_unlocked]
    if not locked:
        return None
    return rng.choice(locked)
