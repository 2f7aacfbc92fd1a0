"""
Xbox Achievements Tracker - HTTP Client
=======================================
Thin wrapper over a shared requests.Session. Every call has a 30 second
timeout; transport failures become NetworkError and non-2xx statuses become
ClientHttpError / ServerHttpError.
"""

import json
import logging

import requests

from xbox_errors import DecodeError, NetworkError, http_error_for

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class HttpClient:

    def __init__(self, session=None, timeout=DEFAULT_TIMEOUT):
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            log.warning("%s %s failed: %s", method, url[:80], e)
            raise NetworkError(f"{method} {url} failed: {e}") from e

    def post_form(self, url, fields, headers=None):
        """POST application/x-www-form-urlencoded."""
        return self.request("POST", url, data=fields, headers=headers)

    def post(self, url, body, headers=None):
        """POST raw bytes; used for signed requests where the exact body matters."""
        return self.request("POST", url, data=body, headers=headers)

    def post_json(self, url, payload, headers=None):
        return self.request("POST", url, json=payload, headers=headers)

    def get(self, url, headers=None, params=None):
        return self.request("GET", url, headers=headers, params=params)

    def download(self, url):
        """Fetch a binary resource. Returns the body bytes."""
        resp = self.get(url)
        raise_for_status(resp)
        return resp.content


def raise_for_status(resp):
    if resp.status_code >= 400:
        raise http_error_for(resp.status_code, getattr(resp, "url", "") or "", resp.text or "")


def expect_json(resp):
    """Parsed JSON body of a successful response."""
    raise_for_status(resp)
    try:
        return resp.json()
    except (ValueError, json.JSONDecodeError) as e:
        raise DecodeError(f"Invalid JSON from {getattr(resp, 'url', '')}: {e}") from e
