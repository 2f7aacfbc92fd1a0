"""
Xbox Achievements Tracker - Event Parser
========================================
Decodes RTA messages and achievement catalog pages into typed objects.

RTA frames are JSON arrays:
  [1, sequence, status, subscription_id, payload]   subscribe acknowledgement
  [3, subscription_id, payload]                      event

Presence payloads carry ``presenceDetails``; achievement progress payloads
carry ``serviceConfigId`` and ``progression``.
"""

import json
import logging
from dataclasses import dataclass, field

from xbox_codec import iso8601_to_unix
from xbox_errors import DecodeError
from xbox_types import Achievement, AchievementProgress, Game, MediaAsset, Reward

log = logging.getLogger(__name__)

RTA_SUBSCRIBE = 1
RTA_UNSUBSCRIBE = 2
RTA_EVENT = 3


@dataclass
class PresenceEvent:
    game: Game = None  # None when offline or on Home


@dataclass
class AchievementEvent:
    progress: list = field(default_factory=list)


@dataclass
class SubscriptionEvent:
    sequence: int
    status: int
    subscription_id: int = None
    payload: object = None


def _load(message):
    if isinstance(message, (dict, list)):
        return message
    if not message:
        return None
    try:
        return json.loads(message)
    except (TypeError, ValueError):
        return None


def is_presence_message(message):
    doc = _load(message)
    return isinstance(doc, dict) and "presenceDetails" in doc


def is_achievement_message(message):
    doc = _load(message)
    return isinstance(doc, dict) and "serviceConfigId" in doc


def parse_game(message):
    """Game from a presence payload: the last presenceDetails entry with isGame set."""
    doc = _load(message)
    if not isinstance(doc, dict):
        return None
    game = None
    for detail in doc.get("presenceDetails") or []:
        if not isinstance(detail, dict) or not detail.get("isGame"):
            continue
        title_id = detail.get("titleId")
        if title_id:
            game = Game(id=str(title_id), title=detail.get("presenceText") or "")
    if game is None:
        log.debug("No game in presence message")
    return game


def parse_achievement_progress(message):
    doc = _load(message)
    if not isinstance(doc, dict) or not doc.get("serviceConfigId"):
        return []
    scid = doc["serviceConfigId"]
    progress = []
    for index, entry in enumerate(doc.get("progression") or []):
        if not isinstance(entry, dict) or not entry.get("id"):
            break
        state = entry.get("progressState")
        if not state:
            log.debug("No progress state at %d", index)
            continue
        try:
            ts = iso8601_to_unix(entry.get("timeUnlocked"))
        except DecodeError:
            log.error("No usable timeUnlocked at %d", index)
            continue
        if state != "Achieved" or ts <= 0:
            ts = 0
        progress.append(AchievementProgress(
            service_config_id=scid, id=str(entry["id"]),
            progress_state=state, unlocked_timestamp=ts))
    return progress


def _unlock_time(item):
    if item.get("progressState") != "Achieved":
        return 0
    raw = (item.get("progression") or {}).get("timeUnlocked")
    if not raw:
        return 0
    try:
        ts = iso8601_to_unix(raw)
    except DecodeError as e:
        log.error("Unable to read timeUnlocked: %s", e)
        return 0
    # locked entries report 0001-01-01T00:00:00Z
    return ts if ts > 0 else 0


def parse_achievements(message):
    """Achievement list from a catalog page (``{"achievements": [...]}``)."""
    doc = _load(message)
    if not isinstance(doc, dict):
        return []
    achievements = []
    for item in doc.get("achievements") or []:
        if not isinstance(item, dict) or not item.get("id"):
            break
        media = [MediaAsset(url=m["url"]) for m in item.get("mediaAssets") or []
                 if isinstance(m, dict) and m.get("url")]
        rewards = [Reward(value=str(r["value"])) for r in item.get("rewards") or []
                   if isinstance(r, dict) and str(r.get("type", "")).lower() == "gamerscore"
                   and r.get("value") is not None]
        secret = item.get("isSecret")
        achievement = Achievement(
            id=str(item["id"]),
            service_config_id=item.get("serviceConfigId") or "",
            name=item.get("name") or "",
            description=item.get("description") or "",
            locked_description=item.get("lockedDescription") or "",
            progress_state=item.get("progressState") or "",
            icon_url=media[0].url if media else "",
            is_secret=secret is True or secret == "true",
            unlocked_timestamp=_unlock_time(item),
            rewards=rewards,
            media_assets=media,
        )
        log.debug("%s | Achievement %s (%s G) is %s", achievement.service_config_id,
                  achievement.name, rewards[0].value if rewards else "no reward",
                  achievement.progress_state)
        achievements.append(achievement)
    return achievements


def parse_event(message):
    """Classify one complete RTA text message.

    Returns PresenceEvent, AchievementEvent, SubscriptionEvent or None for
    anything unrecognised.
    """
    doc = _load(message)
    if isinstance(doc, list) and doc:
        kind = doc[0]
        if kind == RTA_EVENT and len(doc) >= 3:
            payload = doc[2]
        elif kind == RTA_SUBSCRIBE and len(doc) >= 3:
            return SubscriptionEvent(
                sequence=doc[1], status=doc[2],
                subscription_id=doc[3] if len(doc) > 3 else None,
                payload=doc[4] if len(doc) > 4 else None)
        else:
            log.warning("Dropping RTA frame of unknown type: %.200s", message)
            return None
    else:
        payload = doc

    if is_presence_message(payload):
        return PresenceEvent(game=parse_game(payload))
    if is_achievement_message(payload):
        return AchievementEvent(progress=parse_achievement_progress(payload))

    log.warning("Dropping message of unknown shape: %.200s", message)
    return None
