"""
Xbox Achievements Tracker - State Store
=======================================
Single JSON document holding the emulated device identity, the token ladder,
the signed-in Xbox identity and per-source display settings.

File: <config_dir>/achievements-tracker-state.json
Saves are atomic: write .tmp, fsync, keep the previous file as .bak, rename.
"""

import json
import logging
import os
import shutil
import threading
import uuid

from xbox_crypto import RequestSigner
from xbox_errors import CryptoError, PersistenceError
from xbox_types import Device, Identity, Token

log = logging.getLogger(__name__)

CONFIG_DIR = os.environ.get(
    "ACHIEVEMENTS_TRACKER_CONFIG_DIR",
    os.path.join(os.path.expanduser("~"), ".config", "achievements-tracker"))
STATE_FILENAME = "achievements-tracker-state.json"

DEVICE_UUID = "device_uuid"
DEVICE_SERIAL_NUMBER = "device_serial_number"
DEVICE_KEYS = "device_keys"
DEVICE_TOKEN = "device_token"
DEVICE_TOKEN_EXPIRY = "device_token_expiry"
SISU_TOKEN = "sisu_token"
USER_ACCESS_TOKEN = "user_access_token"
USER_ACCESS_TOKEN_EXPIRY = "user_access_token_expiry"
USER_REFRESH_TOKEN = "user_refresh_token"
DEVICE_CODE = "device_code"
XBOX_GAMERTAG = "xbox_gamertag"
XBOX_ID = "xbox_id"
XBOX_UHS = "xbox_uhs"
XBOX_TOKEN = "xbox_token"
XBOX_TOKEN_EXPIRY = "xbox_token_expiry"

# Wiped by clear(); device uuid / serial / keys are kept on purpose.
_SESSION_KEYS = (
    DEVICE_TOKEN, DEVICE_TOKEN_EXPIRY, SISU_TOKEN,
    USER_ACCESS_TOKEN, USER_ACCESS_TOKEN_EXPIRY, USER_REFRESH_TOKEN, DEVICE_CODE,
    XBOX_GAMERTAG, XBOX_ID, XBOX_UHS, XBOX_TOKEN, XBOX_TOKEN_EXPIRY,
)


class StateStore:
    """Thread-safe persistent key/value store. Getters never raise."""

    def __init__(self, directory=None):
        self.directory = directory or CONFIG_DIR
        self.path = os.path.join(self.directory, STATE_FILENAME)
        self.lock = threading.RLock()
        self._device = None
        self._data = self._load()

    # -- file I/O -----------------------------------------------------------

    def _load(self):
        for path in (self.path, self.path + ".bak"):
            if not os.path.isfile(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    if path != self.path:
                        log.warning("State file unreadable, restored from %s", path)
                    return data
            except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
                log.warning("Could not load state file %s: %s", path, e)
        return {}

    def _write(self):
        tmp = self.path + ".tmp"
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            if os.path.isfile(self.path):
                shutil.copyfile(self.path, self.path + ".bak")
            os.replace(tmp, self.path)
        except OSError as e:
            raise PersistenceError(f"Could not save state to {self.path}: {e}") from e

    def _save(self):
        try:
            self._write()
        except PersistenceError as e:
            log.error("%s", e)

    def _get(self, key, default=""):
        value = self._data.get(key)
        return default if value in (None, "") else value

    def _set(self, **values):
        with self.lock:
            self._data.update(values)
            self._save()

    # -- device -------------------------------------------------------------

    def get_device(self):
        """Device identity, generating and persisting any missing part.

        Returns None if the stored keys cannot be parsed.
        """
        with self.lock:
            if self._device is not None:
                return self._device

            changed = False
            if not self._get(DEVICE_UUID):
                self._data[DEVICE_UUID] = str(uuid.uuid4())
                changed = True
            if not self._get(DEVICE_SERIAL_NUMBER):
                self._data[DEVICE_SERIAL_NUMBER] = str(uuid.uuid4())
                changed = True
            if not self._get(DEVICE_KEYS):
                try:
                    signer = RequestSigner.generate()
                except CryptoError as e:
                    log.error("Device key generation failed: %s", e)
                    return None
                self._data[DEVICE_KEYS] = signer.to_json(include_private=True)
                changed = True
            if changed:
                log.info("Created device identity %s", self._data[DEVICE_UUID])
                self._save()

            try:
                signer = RequestSigner.from_json(self._data[DEVICE_KEYS])
            except CryptoError as e:
                log.error("Stored device keys are invalid: %s", e)
                return None

            self._device = Device(
                uuid=self._data[DEVICE_UUID],
                serial_number=self._data[DEVICE_SERIAL_NUMBER],
                signer=signer)
            return self._device

    # -- tokens -------------------------------------------------------------

    def get_user_token(self):
        with self.lock:
            value = self._get(USER_ACCESS_TOKEN)
            if not value:
                return None
            return Token(value, int(self._get(USER_ACCESS_TOKEN_EXPIRY, 0)))

    def get_user_refresh_token(self):
        with self.lock:
            value = self._get(USER_REFRESH_TOKEN)
            return Token(value) if value else None

    def set_user_token(self, user_token, refresh_token, device_code=None):
        values = {
            USER_ACCESS_TOKEN: user_token.value,
            USER_ACCESS_TOKEN_EXPIRY: user_token.expires,
            USER_REFRESH_TOKEN: refresh_token.value,
        }
        if device_code is not None:
            values[DEVICE_CODE] = device_code
        self._set(**values)

    def get_device_code(self):
        with self.lock:
            return self._get(DEVICE_CODE) or None

    def set_device_code(self, device_code):
        self._set(**{DEVICE_CODE: device_code})

    def get_device_token(self):
        with self.lock:
            value = self._get(DEVICE_TOKEN)
            if not value:
                return None
            return Token(value, int(self._get(DEVICE_TOKEN_EXPIRY, 0)))

    def set_device_token(self, token):
        self._set(**{DEVICE_TOKEN: token.value, DEVICE_TOKEN_EXPIRY: token.expires})

    def get_sisu_token(self):
        with self.lock:
            value = self._get(SISU_TOKEN)
            return Token(value) if value else None

    def set_sisu_token(self, token):
        self._set(**{SISU_TOKEN: token.value})

    # -- identity -----------------------------------------------------------

    def get_xbox_identity(self):
        """Full identity or None; partial records count as absent."""
        with self.lock:
            gamertag = self._get(XBOX_GAMERTAG)
            xid = self._get(XBOX_ID)
            uhs = self._get(XBOX_UHS)
            token = self._get(XBOX_TOKEN)
            if not (gamertag and xid and uhs and token):
                return None
            return Identity(
                gamertag=gamertag, xid=xid, uhs=uhs,
                token=Token(token, int(self._get(XBOX_TOKEN_EXPIRY, 0))))

    def set_xbox_identity(self, identity):
        if not (identity.gamertag and identity.xid and identity.uhs and identity.token.value):
            raise ValueError("Refusing to persist a partial Xbox identity")
        self._set(**{
            XBOX_GAMERTAG: identity.gamertag,
            XBOX_ID: identity.xid,
            XBOX_UHS: identity.uhs,
            XBOX_TOKEN: identity.token.value,
            XBOX_TOKEN_EXPIRY: identity.token.expires,
        })

    def clear(self):
        """Forget tokens and identity but keep the device fingerprint."""
        with self.lock:
            for key in _SESSION_KEYS:
                self._data.pop(key, None)
            self._save()
        log.info("Cleared tokens and Xbox identity")

    # -- per-source display settings ----------------------------------------

    def get_configuration(self, source, defaults=None):
        prefix = f"source_{source}_"
        with self.lock:
            values = dict(defaults or {})
            for key, value in self._data.items():
                if key.startswith(prefix):
                    values[key[len(prefix):]] = value
            return values

    def set_configuration(self, source, values):
        prefix = f"source_{source}_"
        self._set(**{prefix + k: v for k, v in values.items()})
