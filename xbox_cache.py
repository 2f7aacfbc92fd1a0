"""
Xbox Achievements Tracker - Asset Cache
=======================================
Image files keyed by (type, id) under $TMPDIR:

  <TMPDIR>/obs_achievement_tracker_<type>_<id>.png

Concurrent downloads of the same asset are harmless: the file is written in
place and the last writer wins.
"""

import logging
import os

from xbox_errors import XboxError

log = logging.getLogger(__name__)

CACHE_DIR = os.environ.get("TMPDIR") or "/tmp/"


class AssetCache:

    def __init__(self, http, directory=None):
        self.http = http
        self.directory = directory or CACHE_DIR

    def path_for(self, asset_type, asset_id):
        return os.path.join(self.directory, f"obs_achievement_tracker_{asset_type}_{asset_id}.png")

    def contains(self, asset_type, asset_id):
        return os.path.isfile(self.path_for(asset_type, asset_id))

    def download(self, url, asset_type, asset_id):
        """Local path of the asset, fetching it on a miss. None on failure."""
        path = self.path_for(asset_type, asset_id)
        if os.path.isfile(path):
            return path
        if not url:
            return None
        try:
            data = self.http.download(url)
            with open(path, "wb") as f:
                f.write(data)
        except (XboxError, OSError) as e:
            log.warning("Could not cache %s %s: %s", asset_type, asset_id, e)
            return None
        log.debug("Cached %s %s -> %s", asset_type, asset_id, path)
        return path
