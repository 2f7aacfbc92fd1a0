"""Tests for the persistent state store."""

import json

import pytest

from xbox_state import STATE_FILENAME, StateStore
from xbox_types import Identity, Token


class TestDevice:

    def test_device_created_and_persisted(self, state):
        """First call generates uuid, serial and keys and writes them."""
        device = state.get_device()
        assert device.uuid and device.serial_number
        with open(state.path, encoding="utf-8") as f:
            data = json.load(f)
        assert data["device_uuid"] == device.uuid
        assert "d" in json.loads(data["device_keys"])

    def test_device_stable_across_reloads(self, state):
        """A new store on the same directory sees the same device."""
        device = state.get_device()
        reloaded = StateStore(state.directory).get_device()
        assert reloaded.uuid == device.uuid
        assert reloaded.signer.to_json() == device.signer.to_json()

    def test_invalid_keys_yield_none(self, tmp_path):
        """Corrupt key material is reported as no device."""
        with open(tmp_path / STATE_FILENAME, "w", encoding="utf-8") as f:
            json.dump({"device_uuid": "u", "device_serial_number": "s", "device_keys": "{}"}, f)
        assert StateStore(str(tmp_path)).get_device() is None


class TestTokens:

    def test_missing_values_are_none(self, state):
        """Getters return None on an empty store."""
        assert state.get_user_token() is None
        assert state.get_user_refresh_token() is None
        assert state.get_device_token() is None
        assert state.get_sisu_token() is None
        assert state.get_device_code() is None
        assert state.get_xbox_identity() is None

    def test_user_token_roundtrip(self, state):
        """User, refresh token and device code are stored together."""
        state.set_user_token(Token("A", 123), Token("R"), "DC")
        assert state.get_user_token() == Token("A", 123)
        assert state.get_user_refresh_token().value == "R"
        assert state.get_device_code() == "DC"

    def test_identity_roundtrip(self, state, identity):
        """A stored identity reads back intact."""
        state.set_xbox_identity(identity)
        assert StateStore(state.directory).get_xbox_identity() == identity

    def test_partial_identity_rejected(self, state):
        """Identities missing a field are never persisted."""
        with pytest.raises(ValueError):
            state.set_xbox_identity(Identity("", "1", "u", Token("T", 1)))
        assert state.get_xbox_identity() is None

    def test_clear_keeps_device(self, state, identity):
        """clear() drops tokens and identity but keeps the device fingerprint."""
        device = state.get_device()
        state.set_user_token(Token("A", 1), Token("R"))
        state.set_device_token(Token("D", 2))
        state.set_xbox_identity(identity)
        state.clear()

        reloaded = StateStore(state.directory)
        assert reloaded.get_xbox_identity() is None
        assert reloaded.get_user_refresh_token() is None
        assert reloaded.get_device_token() is None
        assert reloaded.get_device().uuid == device.uuid


class TestAtomicity:

    def test_backup_kept(self, state):
        """The previous document is kept as .bak."""
        state.set_device_code("one")
        state.set_device_code("two")
        with open(state.path + ".bak", encoding="utf-8") as f:
            assert json.load(f)["device_code"] == "one"

    def test_leftover_tmp_does_not_replace_state(self, state):
        """A crash after writing .tmp leaves the previous state readable."""
        state.set_device_code("committed")
        with open(state.path + ".tmp", "w", encoding="utf-8") as f:
            f.write('{"device_code": "half')
        assert StateStore(state.directory).get_device_code() == "committed"

    def test_corrupt_main_file_falls_back_to_backup(self, state):
        """An unreadable main file is replaced by the .bak copy on load."""
        state.set_device_code("one")
        state.set_device_code("two")
        with open(state.path, "w", encoding="utf-8") as f:
            f.write("{broken")
        assert StateStore(state.directory).get_device_code() == "one"

    def test_write_failure_keeps_memory(self, state, monkeypatch):
        """I/O errors are logged and the in-memory value survives."""
        def fail(*args, **kwargs):
            raise OSError("disk full")
        monkeypatch.setattr("xbox_state.os.replace", fail)
        state.set_device_code("memory-only")
        assert state.get_device_code() == "memory-only"


class TestConfiguration:

    def test_source_settings_roundtrip(self, state):
        """Per-source settings are namespaced and survive clear()."""
        state.set_configuration("gamerscore", {"font_size": 48, "font_face": "Arial"})
        state.clear()
        assert state.get_configuration("gamerscore") == {"font_size": 48, "font_face": "Arial"}
        assert state.get_configuration("gamertag", {"font_size": 12}) == {"font_size": 12}
