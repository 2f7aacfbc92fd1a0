"""
Xbox Achievements Tracker - Monitor & Dispatcher
================================================
Wires the RTA transport, event parser and session together and publishes
three topics to subscribers:

  connected_changed(connected, reason)
  game_played(game)
  achievements_progressed(gamerscore, progress)

Publishing is synchronous on the publisher's thread (normally the RTA thread).
"""

import logging
import threading

from xbox_errors import UnavailableError, XboxError
from xbox_events import AchievementEvent, PresenceEvent, SubscriptionEvent, parse_event, parse_game
from xbox_rta import RtaTransport

log = logging.getLogger(__name__)

PRESENCE_SUBSCRIPTION = "https://userpresence.xboxlive.com/users/xuid({xid})/richpresence"
ACHIEVEMENTS_SUBSCRIPTION = "https://achievements.xboxlive.com/users/xuid({xid})/achievements/{scid}"

CONNECTED_CHANGED = "connected_changed"
GAME_PLAYED = "game_played"
ACHIEVEMENTS_PROGRESSED = "achievements_progressed"


class Dispatcher:

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {CONNECTED_CHANGED: [], GAME_PLAYED: [], ACHIEVEMENTS_PROGRESSED: []}

    def _subscribe(self, topic, callback):
        with self._lock:
            self._subscribers[topic].append(callback)

    def _publish(self, topic, *args):
        with self._lock:
            callbacks = list(self._subscribers[topic])
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                log.exception("Subscriber of %s raised", topic)

    def subscribe_connected_changed(self, callback):
        self._subscribe(CONNECTED_CHANGED, callback)

    def subscribe_game_played(self, callback):
        self._subscribe(GAME_PLAYED, callback)

    def subscribe_achievements_progressed(self, callback):
        self._subscribe(ACHIEVEMENTS_PROGRESSED, callback)

    def publish_connected_changed(self, connected, reason=None):
        self._publish(CONNECTED_CHANGED, connected, reason)

    def publish_game_played(self, game):
        self._publish(GAME_PLAYED, game)

    def publish_achievements_progressed(self, gamerscore, progress):
        self._publish(ACHIEVEMENTS_PROGRESSED, gamerscore, progress)


class XboxMonitor:

    def __init__(self, authenticator, client, session, dispatcher=None, transport_factory=RtaTransport):
        self.authenticator = authenticator
        self.client = client
        self.session = session
        self.dispatcher = dispatcher or Dispatcher()
        self.transport_factory = transport_factory
        self.transport = None
        self.identity = None
        self.base_gamerscore = 0
        self._achievement_scid = None

    @property
    def is_active(self):
        return self.transport is not None and self.transport.is_active

    def start(self):
        """Resolve the identity, read the base gamerscore and open the RTA socket."""
        if self.is_active:
            log.warning("Monitor already running")
            return False
        self.identity = self.authenticator.get_identity()
        if self.identity is None:
            raise UnavailableError("No Xbox identity; sign in first")

        try:
            self.base_gamerscore = self.client.fetch_gamerscore()
        except XboxError as e:
            log.warning("Could not fetch gamerscore: %s", e)
        self.session.gamerscore.base_value = self.base_gamerscore

        self._achievement_scid = None
        self.transport = self.transport_factory(self.identity, self.handle_message, self.handle_status)
        return self.transport.start()

    def stop(self):
        if self.transport is not None:
            self.transport.stop()
            self.transport = None

    # -- transport callbacks ------------------------------------------------

    def handle_status(self, connected, reason=None):
        self.dispatcher.publish_connected_changed(connected, reason)
        if not connected or self.transport is None:
            self._achievement_scid = None
            return
        self.transport.subscribe(PRESENCE_SUBSCRIPTION.format(xid=self.identity.xid))
        self.sync_current_game()

    def handle_message(self, text):
        event = parse_event(text)
        try:
            if isinstance(event, PresenceEvent):
                self.apply_game(event.game)
            elif isinstance(event, AchievementEvent):
                self.apply_progress(event.progress)
            elif isinstance(event, SubscriptionEvent):
                self._on_subscribed(event)
        except XboxError as e:
            log.error("Could not apply RTA event: %s", e)

    def _on_subscribed(self, event):
        if event.status != 0:
            log.warning("RTA subscription #%s rejected with status %s", event.sequence, event.status)
            return
        log.debug("RTA subscription #%s active as %s", event.sequence, event.subscription_id)
        if isinstance(event.payload, dict) and "presenceDetails" in event.payload:
            self.apply_game(parse_game(event.payload))

    # -- session updates ----------------------------------------------------

    def sync_current_game(self):
        try:
            game = self.client.get_current_game()
        except XboxError as e:
            log.error("Could not read current game: %s", e)
            return
        self.apply_game(game)

    def apply_game(self, game):
        if game is None:
            if self.session.game is not None:
                log.info("No game played anymore")
            self.session.clear()
            self.session.gamerscore.base_value = self.base_gamerscore
            return
        if self.session.is_game_played(game):
            return
        self.session.change_game(game)
        self._subscribe_achievements()
        self.dispatcher.publish_game_played(game)

    def _subscribe_achievements(self):
        scid = next((a.service_config_id for a in self.session.achievements if a.service_config_id), None)
        if not scid or scid == self._achievement_scid or self.transport is None:
            return
        if self.transport.subscribe(ACHIEVEMENTS_SUBSCRIPTION.format(xid=self.identity.xid, scid=scid)):
            self._achievement_scid = scid

    def apply_progress(self, progress):
        for item in progress:
            if self.session.unlock_achievement(item) is None:
                continue
            self.dispatcher.publish_achievements_progressed(self.session.gamerscore, item)
