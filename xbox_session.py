"""
Xbox Achievements Tracker - Session
===================================
Per-game state for the signed-in user: the current game, its sorted
achievement catalog and the gamerscore earned since tracking started.

Not internally synchronized; the monitor drives it from the RTA thread.
"""

import copy
import logging
import threading
import time

from xbox_types import Gamerscore, UnlockedAchievement, find_achievement, sort_achievements

log = logging.getLogger(__name__)

PREFETCH_DELAY = 5.0
ACHIEVEMENT_ICON = "achievement_icon"
GAME_COVER = "game_cover"
GAMERPIC = "gamerpic"


class XboxSession:

    def __init__(self, client, cache, prefetch_delay=PREFETCH_DELAY, sleep=time.sleep):
        self.client = client
        self.cache = cache
        self.prefetch_delay = prefetch_delay
        self.sleep = sleep
        self.game = None
        self.achievements = []
        self.gamerscore = Gamerscore()

    def is_game_played(self, game):
        if self.game is None or game is None:
            return False
        return self.game.id.lower() == game.id.lower()

    def change_game(self, game, on_ready=None):
        """Switch to ``game``, load its catalog and prefetch icons in the background.

        Returns the prefetch thread (None when there is nothing to prefetch).
        """
        fetched = self.client.get_game_achievements(game)
        self.game = copy.copy(game)
        self.achievements = []
        unique, seen = [], set()
        for achievement in fetched:
            key = achievement.id.lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(achievement)
        self.achievements = sort_achievements(unique)
        log.info("Now playing %s (%s) with %d achievements", game.title, game.id, len(self.achievements))

        if not self.achievements:
            if on_ready is not None:
                on_ready(0)
            return None
        return self.prefetch_icons(on_ready)

    def prefetch_icons(self, on_ready=None):
        snapshot = copy.deepcopy(self.achievements)
        thread = threading.Thread(
            target=self._prefetch, args=(snapshot, on_ready), name="icon-prefetch", daemon=True)
        thread.start()
        log.info("[Prefetch] Started background icon prefetch thread")
        return thread

    def _prefetch(self, achievements, on_ready):
        count = 0
        for achievement in achievements:
            if not achievement.icon_url:
                continue
            asset_id = f"{achievement.service_config_id}_{achievement.id}"
            cached = self.cache.contains(ACHIEVEMENT_ICON, asset_id)
            try:
                path = self.cache.download(achievement.icon_url, ACHIEVEMENT_ICON, asset_id)
            except Exception as e:
                log.warning("[Prefetch] %s failed: %s", asset_id, e)
                continue
            if path is None:
                continue
            count += 1
            if not cached:
                # be polite to the image CDN
                self.sleep(self.prefetch_delay)
        log.info("[Prefetch] Finished prefetching %d achievement icons", count)
        if on_ready is not None:
            try:
                on_ready(count)
            except Exception:
                log.exception("[Prefetch] on_ready callback raised")

    def download_game_cover(self):
        """Local path of the current game's cover art, or None."""
        if self.game is None:
            return None
        url = self.client.get_game_cover(self.game)
        if not url:
            return None
        return self.cache.download(url, GAME_COVER, self.game.id)

    def download_gamerpic(self, xid):
        url = self.client.fetch_gamerpic()
        if not url:
            return None
        return self.cache.download(url, GAMERPIC, xid)

    def unlock_achievement(self, progress):
        """Apply an achievement progress update. Returns the updated achievement or None."""
        achievement = find_achievement(self.achievements, progress.id)
        if achievement is None:
            log.warning("Progress for unknown achievement %s", progress.id)
            return None

        was_unlocked = achievement.is_unlocked
        achievement.progress_state = progress.progress_state
        if not was_unlocked:
            achievement.unlocked_timestamp = max(progress.unlocked_timestamp, 0)
        self.achievements = sort_achievements(self.achievements)
        if was_unlocked or not achievement.is_unlocked:
            return achievement

        value = 0
        if achievement.rewards:
            try:
                value = int(achievement.rewards[0].value)
            except (TypeError, ValueError):
                log.warning("Reward of %s is not a number: %r", achievement.id, achievement.rewards[0].value)
        self.gamerscore.unlocked_achievements.append(UnlockedAchievement(id=achievement.id, value=value))
        log.info("Unlocked %s (+%d G)", achievement.name or achievement.id, value)
        return achievement

    def compute_gamerscore(self):
        return self.gamerscore.compute()

    def clear(self):
        self.game = None
        self.achievements = []
        self.gamerscore = Gamerscore()
