#!/usr/bin/env python3
"""
Xbox Achievements Tracker
=========================
Follows the signed-in Xbox Live user in real time: current game, gamerscore
and achievement unlocks.

Usage:
  achievements-tracker login     # Browser sign-in (device code flow)
  achievements-tracker logout    # Forget tokens, keep the device identity
  achievements-tracker status    # Gamertag, gamerscore, current game
  achievements-tracker watch     # Stream game changes and unlocks until Ctrl+C

Environment:
  ACHIEVEMENTS_TRACKER_CONFIG_DIR   state directory
  ACHIEVEMENTS_TRACKER_LOCALE       Accept-Language for titles (default en-US)
  ACHIEVEMENTS_TRACKER_LOG_LEVEL    logging level (default INFO)
"""

import logging
import os
import sys
import threading

import click

from xbox_auth import Authenticator
from xbox_cache import AssetCache
from xbox_client import XboxClient
from xbox_errors import XboxError
from xbox_http import HttpClient
from xbox_monitor import XboxMonitor
from xbox_session import XboxSession
from xbox_state import StateStore
from xbox_types import count_locked, count_unlocked

log = logging.getLogger("achievements_tracker")

LOG_LEVEL = os.environ.get("ACHIEVEMENTS_TRACKER_LOG_LEVEL", "INFO")


def _setup_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class Tracker:
    """Object graph shared by the commands."""

    def __init__(self, config_dir=None):
        self.http = HttpClient()
        self.state = StateStore(config_dir)
        self.authenticator = Authenticator(self.state, self.http)
        self.client = XboxClient(self.authenticator, self.http)
        self.cache = AssetCache(self.http)
        self.session = XboxSession(self.client, self.cache)


@click.group()
@click.option("--config-dir", type=click.Path(file_okay=False), default=None,
              help="Directory holding achievements-tracker-state.json")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_dir, verbose):
    _setup_logging(verbose)
    ctx.obj = Tracker(config_dir)


@cli.command()
@click.pass_obj
def login(tracker):
    """Sign in with a Microsoft account."""
    done = threading.Event()
    outcome = {}

    def on_completed(result):
        outcome["result"] = result
        done.set()

    if tracker.authenticator.authenticate(on_completed) is None:
        click.echo("[!] No device identity available; check the state directory", err=True)
        sys.exit(1)
    done.wait()

    result = outcome["result"]
    if not result.succeeded:
        click.echo(f"[!] Sign-in failed: {result.error_message}", err=True)
        sys.exit(1)
    click.echo(f"[+] Signed in as {result.identity.gamertag}")


@cli.command()
@click.pass_obj
def logout(tracker):
    """Forget tokens and identity."""
    tracker.state.clear()
    click.echo("[+] Signed out")


@cli.command()
@click.pass_obj
def status(tracker):
    """Show who is signed in and what they are playing."""
    identity = tracker.authenticator.get_identity()
    if identity is None:
        click.echo("Not signed in. Run: achievements-tracker login")
        sys.exit(1)
    click.echo(f"Gamertag:   {identity.gamertag} (xuid {identity.xid})")
    try:
        click.echo(f"Gamerscore: {tracker.client.fetch_gamerscore()}")
        game = tracker.client.get_current_game()
    except XboxError as e:
        click.echo(f"[!] {e}", err=True)
        sys.exit(1)
    if game is None:
        click.echo("Playing:    nothing")
        return
    click.echo(f"Playing:    {game.title} ({game.id})")
    tracker.session.game = game
    try:
        click.echo(f"Gamerpic:   {tracker.session.download_gamerpic(identity.xid) or '-'}")
        click.echo(f"Cover:      {tracker.session.download_game_cover() or '-'}")
    except XboxError as e:
        log.warning("Could not fetch images: %s", e)
    achievements = tracker.client.get_game_achievements(game)
    click.echo(f"Unlocked:   {count_unlocked(achievements)}/{len(achievements)} "
               f"({count_locked(achievements)} locked)")


@cli.command()
@click.pass_obj
def watch(tracker):
    """Follow presence and achievement unlocks until interrupted."""
    monitor = XboxMonitor(tracker.authenticator, tracker.client, tracker.session)
    dispatcher = monitor.dispatcher

    def on_connected(connected, reason):
        if connected:
            click.echo("[+] Connected to Xbox Live")
        else:
            click.echo(f"[!] Disconnected{': ' + reason if reason else ''}")

    def on_game(game):
        click.echo(f"[*] Playing {game.title} - {count_unlocked(tracker.session.achievements)}"
                   f"/{len(tracker.session.achievements)} achievements")

    def on_progress(gamerscore, progress):
        click.echo(f"[+] Achievement {progress.id} {progress.progress_state}, "
                   f"gamerscore now {gamerscore.compute()}")

    dispatcher.subscribe_connected_changed(on_connected)
    dispatcher.subscribe_game_played(on_game)
    dispatcher.subscribe_achievements_progressed(on_progress)

    try:
        monitor.start()
    except XboxError as e:
        click.echo(f"[!] {e}", err=True)
        sys.exit(1)
    try:
        while monitor.is_active:
            monitor.transport.thread.join(1)
    except KeyboardInterrupt:
        click.echo("Stopping...")
    finally:
        monitor.stop()


def main():
    cli()


if __name__ == "__main__":
    main()
