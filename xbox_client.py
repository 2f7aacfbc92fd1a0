"""
Xbox Achievements Tracker - Xbox Live REST Client
=================================================
Authorized calls against presence, profile, TitleHub and achievements.
Every request carries ``Authorization: XBL3.0 x=<uhs>;<token>``.
"""

import logging
import os

from xbox_codec import json_pointer, url_encode
from xbox_errors import DecodeError, UnavailableError, XboxError
from xbox_events import parse_achievements
from xbox_http import HttpClient, expect_json
from xbox_types import Game

log = logging.getLogger(__name__)

LOCALE = os.environ.get("ACHIEVEMENTS_TRACKER_LOCALE", "en-US")

PRESENCE_ENDPOINT = "https://userpresence.xboxlive.com/users/xuid({xid})"
PROFILE_SETTINGS_ENDPOINT = "https://profile.xboxlive.com/users/batch/profile/settings"
TITLE_HUB_ENDPOINT = "https://titlehub.xboxlive.com/users/xuid({xid})/titles/titleId({title_id})/decoration/image"
ACHIEVEMENTS_ENDPOINT = "https://achievements.xboxlive.com/users/xuid({xid})/achievements?titleId={title_id}"

GAMERSCORE_SETTING = "Gamerscore"
GAMERPIC_SETTING = "GameDisplayPicRaw"


class XboxClient:
    """``identity_provider`` is any object with ``get_identity()`` (the Authenticator)."""

    def __init__(self, identity_provider, http=None, locale=None):
        self.identity_provider = identity_provider
        self.http = http or HttpClient()
        self.locale = locale or LOCALE

    def _identity(self):
        identity = self.identity_provider.get_identity()
        if identity is None:
            raise UnavailableError("No Xbox identity; sign in first")
        return identity

    def _headers(self, identity, language=False):
        headers = {
            "Authorization": identity.authorization,
            "x-xbl-contract-version": "2",
        }
        if language:
            headers["Accept-Language"] = self.locale
        return headers

    def _profile_setting(self, setting):
        identity = self._identity()
        resp = self.http.post_json(
            PROFILE_SETTINGS_ENDPOINT,
            {"userIds": [identity.xid], "settings": [setting]},
            headers=self._headers(identity))
        value = json_pointer(expect_json(resp), "/profileUsers/0/settings/0/value")
        if value is None:
            raise DecodeError(f"No {setting} in profile response")
        return value

    def fetch_gamerscore(self):
        value = self._profile_setting(GAMERSCORE_SETTING)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Gamerscore is not a number: {value!r}") from e

    def fetch_gamerpic(self):
        url = self._profile_setting(GAMERPIC_SETTING)
        # Xbox sometimes leaves "&" un-unescaped inside the URL
        return url.replace("\\u0026", "&").replace("u0026", "&")

    def get_current_game(self):
        """Title the user is actively playing, or None when offline / on Home."""
        identity = self._identity()
        resp = self.http.get(PRESENCE_ENDPOINT.format(xid=identity.xid), headers=self._headers(identity))
        data = expect_json(resp)

        state = data.get("state") if isinstance(data, dict) else None
        if not state or state == "Offline":
            log.info("User is offline at the moment")
            return None

        for title in json_pointer(data, "/devices/0/titles", []) or []:
            name, title_id, title_state = title.get("name"), title.get("id"), title.get("state")
            if not (name and title_id and title_state):
                break
            if name == "Home":
                continue
            if title_state != "Active":
                continue
            log.info("Current game: %s (%s)", name, title_id)
            return Game(id=str(title_id), title=name)

        log.info("No game found")
        return None

    def get_game_cover(self, game):
        """Poster art URL, else box art, else the title's display image."""
        identity = self._identity()
        url = TITLE_HUB_ENDPOINT.format(xid=identity.xid, title_id=game.id)
        data = expect_json(self.http.get(url, headers=self._headers(identity, language=True)))

        images = json_pointer(data, "/titles/0/images", []) or []
        for wanted in ("poster", "boxart"):
            for image in images:
                if str(image.get("type", "")).lower() == wanted and image.get("url"):
                    return image["url"]
        return json_pointer(data, "/titles/0/displayImage")

    def get_game_achievements(self, game):
        """Full achievement catalog for a title, following continuation tokens.

        A failing page ends the walk; the pages fetched so far are returned.
        """
        identity = self._identity()
        headers = self._headers(identity, language=True)
        base_url = ACHIEVEMENTS_ENDPOINT.format(xid=identity.xid, title_id=game.id)

        achievements = []
        continuation = None
        while True:
            url = base_url
            if continuation:
                url += "&continuationToken=" + url_encode(continuation)
            try:
                data = expect_json(self.http.get(url, headers=headers))
            except XboxError as e:
                log.error("Failed to fetch achievements for %s: %s", game.title, e)
                break
            achievements.extend(parse_achievements(data))
            continuation = json_pointer(data, "/pagingInfo/continuationToken")
            if not continuation:
                break

        log.info("Received %d achievements for game %s", len(achievements), game.title)
        return achievements
