"""
Xbox Achievements Tracker - Xbox Live Authentication
====================================================
Signs the user in with the device auth flow (ProofOfPossession) and produces
the SISU authorization token that carries the Xbox identity (xid, uhs, gtg).

Token ladder:
  1. User token   - Microsoft OAuth device-code flow (or refresh grant)
  2. Device token - device.auth.xboxlive.com, signed with the device key
  3. SISU token   - sisu.xboxlive.com/authorize, signed with the device key

Every stage persists its result to the StateStore only after all required
fields were parsed. Failures collapse into a single error message.
"""

import json
import logging
import threading
import time
import webbrowser
from dataclasses import dataclass

from xbox_codec import iso8601_to_unix, json_pointer, require
from xbox_errors import AuthenticationError, TokenExpiredError, XboxError
from xbox_http import HttpClient, expect_json
from xbox_types import Identity, Token

log = logging.getLogger(__name__)

CLIENT_ID = "000000004c12ae6f"
SCOPE = "service::user.auth.xboxlive.com::MBI_SSL"

CONNECT_ENDPOINT = "https://login.live.com/oauth20_connect.srf"
TOKEN_ENDPOINT = "https://login.live.com/oauth20_token.srf"
REGISTER_ENDPOINT = "https://login.live.com/oauth20_remoteconnect.srf?otc="
DEVICE_AUTHENTICATE = "https://device.auth.xboxlive.com/device/authenticate"
SISU_AUTHENTICATE = "https://sisu.xboxlive.com/authorize"

GRANT_TYPE_DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"
GRANT_TYPE_REFRESH_TOKEN = "refresh_token"


@dataclass
class AuthenticationResult:
    identity: Identity = None
    error_message: str = None

    @property
    def succeeded(self):
        return self.identity is not None and not self.error_message


class Authenticator:
    """Runs the token ladder against the Xbox Live services.

    ``authenticate`` runs on a worker thread and reports once through a
    callback; ``get_identity`` is synchronous and refreshes expired tokens.
    """

    def __init__(self, state, http=None, open_url=webbrowser.open,
                 sleep=time.sleep, clock=time.time):
        self.state = state
        self.http = http or HttpClient()
        self.open_url = open_url
        self.sleep = sleep
        self.clock = clock
        self.lock = threading.Lock()

    def _now(self):
        return int(self.clock())

    # -- public entry points ------------------------------------------------

    def authenticate(self, on_completed=None):
        """Start the interactive flow on a worker thread.

        Returns the started thread, or None when no device identity exists.
        ``on_completed`` receives an AuthenticationResult exactly once.
        """
        device = self.state.get_device()
        if device is None:
            log.error("Unable to authenticate: no device identity found")
            return None

        thread = threading.Thread(
            target=self._authenticate_worker, args=(device, on_completed),
            name="xbox-auth", daemon=True)
        thread.start()
        return thread

    def _authenticate_worker(self, device, on_completed):
        result = AuthenticationResult()
        try:
            result.identity = self.run(device, allow_cache=True, interactive=True)
            log.info("Authenticated as %s", result.identity.gamertag)
        except AuthenticationError as e:
            result.error_message = str(e)
            log.error("Authentication failed: %s", e)
        except Exception as e:
            result.error_message = f"Unexpected authentication failure: {e}"
            log.exception("Authentication failed")
        if on_completed is not None:
            try:
                on_completed(result)
            except Exception:
                log.exception("Authentication callback raised")

    def get_identity(self):
        """Current identity, refreshing the whole ladder if the SISU token expired.

        Returns None when the user never signed in or the refresh failed.
        """
        identity = self.state.get_xbox_identity()
        if identity is None:
            log.info("No identity found")
            return None
        if not identity.token.is_expired(self._now()):
            return identity

        log.info("SISU token expired, refreshing tokens")
        device = self.state.get_device()
        if device is None:
            log.error("No device found for Xbox token refresh")
            return None
        try:
            return self.run(device, allow_cache=False, interactive=False, use_cached_user=False)
        except AuthenticationError as e:
            log.error("Token refresh failed: %s", e)
            return None

    # -- ladder -------------------------------------------------------------

    def run(self, device, allow_cache=True, interactive=True, use_cached_user=True):
        """Walk user -> device -> SISU synchronously. Raises AuthenticationError.

        The lock is not held while waiting for the user to approve a sign-in code.
        """
        with self.lock:
            user_token = self._user_token(interactive, use_cached_user)
        if user_token is None:
            user_token = self.device_code_flow()
        with self.lock:
            device_token = self.retrieve_device_token(device, allow_cache)
            return self.retrieve_sisu_token(device, user_token, device_token)

    def _user_token(self, interactive, use_cached_user):
        """Cached or refreshed user token. None means the browser sign-in is needed."""
        if use_cached_user:
            cached = self.state.get_user_token()
            if cached is not None and not cached.is_expired(self._now()):
                log.info("Using cached user token")
                return cached

        refresh_token = self.state.get_user_refresh_token()
        if refresh_token is not None:
            log.info("Using refresh token")
            try:
                return self.refresh_user_token(refresh_token)
            except AuthenticationError as e:
                if not interactive:
                    raise
                log.warning("%s; falling back to browser sign-in", e)

        if not interactive:
            raise AuthenticationError("No refresh token available; sign in again")
        return None

    def refresh_user_token(self, refresh_token):
        """OAuth refresh grant. The old refresh token stays stored on failure."""
        try:
            resp = self.http.post_form(TOKEN_ENDPOINT, {
                "client_id": CLIENT_ID,
                "refresh_token": refresh_token.value,
                "scope": SCOPE,
                "grant_type": GRANT_TYPE_REFRESH_TOKEN,
            })
            data = expect_json(resp)
            access = require(data, "/access_token")
            refresh = require(data, "/refresh_token")
            expires_in = int(require(data, "/expires_in"))
        except (XboxError, ValueError, TypeError) as e:
            raise AuthenticationError(f"Unable to refresh the user token: {e}") from e

        user_token = Token(access, self._now() + expires_in // 1000)
        self.state.set_user_token(user_token, Token(refresh))
        log.info("User token refreshed")
        return user_token

    def request_device_code(self):
        """Ask the connect endpoint for a user_code / device_code pair."""
        try:
            resp = self.http.post_form(CONNECT_ENDPOINT, {
                "client_id": CLIENT_ID,
                "response_type": "device_code",
                "scope": SCOPE,
            })
            data = expect_json(resp)
            return {
                "user_code": require(data, "/user_code"),
                "device_code": require(data, "/device_code"),
                "interval": int(require(data, "/interval")),
                "expires_in": int(require(data, "/expires_in")),
            }
        except (XboxError, ValueError, TypeError) as e:
            raise AuthenticationError(f"Unable to retrieve a user token: {e}") from e

    def device_code_flow(self):
        log.info("Starting Xbox sign-in in browser")
        codes = self.request_device_code()

        verification_uri = REGISTER_ENDPOINT + codes["user_code"]
        log.info("Open %s and approve the sign-in (code %s)", verification_uri, codes["user_code"])
        if not self.open_url(verification_uri):
            raise AuthenticationError("Unable to retrieve a user token: could not open the browser")

        return self.poll_for_user_token(codes["device_code"], codes["interval"], codes["expires_in"])

    def poll_for_user_token(self, device_code, interval, expires_in):
        """Poll the token endpoint until the user approves or the code expires."""
        fields = {
            "client_id": CLIENT_ID,
            "device_code": device_code,
            "grant_type": GRANT_TYPE_DEVICE_CODE,
        }
        start = self.clock()
        log.info("Waiting for the user to validate the code")
        while self.clock() - start < expires_in:
            self.sleep(interval)
            try:
                resp = self.http.post_form(TOKEN_ENDPOINT, fields)
            except XboxError as e:
                log.warning("Token poll failed: %s", e)
                continue
            if resp.status_code != 200:
                log.debug("Device not validated yet (HTTP %d)", resp.status_code)
                continue
            try:
                data = resp.json()
            except ValueError:
                log.error("Token response is not valid JSON")
                continue
            access = json_pointer(data, "/access_token")
            refresh = json_pointer(data, "/refresh_token")
            expires = json_pointer(data, "/expires_in")
            if not (access and refresh and expires is not None):
                log.error("Could not parse access_token from token response")
                continue

            user_token = Token(access, self._now() + int(expires) // 1000)
            self.state.set_user_token(user_token, Token(refresh), device_code)
            log.info("User & refresh token received")
            return user_token

        raise TokenExpiredError("Unable to retrieve a user token: the sign-in code expired")

    # -- signed Xbox requests -------------------------------------------------

    def _signed_post(self, device, url, payload):
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        signature = device.signer.signature_header(url, "", body, timestamp=self.clock())
        headers = {
            "signature": signature,
            "Cache-Control": "no-store, must-revalidate, no-cache",
            "Content-Type": "text/plain;charset=UTF-8",
            "x-xbl-contract-version": "1",
        }
        return expect_json(self.http.post(url, body, headers=headers))

    def retrieve_device_token(self, device, allow_cache=True):
        if allow_cache:
            cached = self.state.get_device_token()
            if cached is not None and not cached.is_expired(self._now()):
                log.info("Using cached device token")
                return cached

        payload = {
            "Properties": {
                "AuthMethod": "ProofOfPossession",
                "Id": "{" + device.uuid + "}",
                "DeviceType": "iOS",
                "SerialNumber": "{" + device.serial_number + "}",
                "Version": "1.0.0",
                "ProofKey": device.signer.proof_key,
            },
            "RelyingParty": "http://auth.xboxlive.com",
            "TokenType": "JWT",
        }
        try:
            data = self._signed_post(device, DEVICE_AUTHENTICATE, payload)
            token = Token(require(data, "/Token"), iso8601_to_unix(require(data, "/NotAfter")))
        except XboxError as e:
            raise AuthenticationError(f"Unable to retrieve a device token: {e}") from e

        self.state.set_device_token(token)
        log.info("Device token acquired")
        return token

    def retrieve_sisu_token(self, device, user_token, device_token):
        payload = {
            "AccessToken": f"t={user_token.value}",
            "AppId": CLIENT_ID,
            "DeviceToken": device_token.value,
            "Sandbox": "RETAIL",
            "UseModernGamertag": True,
            "SiteName": "user.auth.xboxlive.com",
            "RelyingParty": "http://xboxlive.com",
            "ProofKey": device.signer.proof_key,
        }
        try:
            data = self._signed_post(device, SISU_AUTHENTICATE, payload)
            token = Token(
                require(data, "/AuthorizationToken/Token"),
                iso8601_to_unix(require(data, "/AuthorizationToken/NotAfter")))
            identity = Identity(
                gamertag=require(data, "/AuthorizationToken/DisplayClaims/xui/0/gtg"),
                xid=str(require(data, "/AuthorizationToken/DisplayClaims/xui/0/xid")),
                uhs=require(data, "/AuthorizationToken/DisplayClaims/xui/0/uhs"),
                token=token)
        except XboxError as e:
            raise AuthenticationError(f"Unable to retrieve a sisu token: {e}") from e

        self.state.set_sisu_token(token)
        self.state.set_xbox_identity(identity)
        log.info("Sisu authentication succeeded for %s", identity.gamertag)
        return identity
