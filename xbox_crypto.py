"""
Xbox Achievements Tracker - Request Signing
===========================================
EC P-256 device keys and the Xbox Live proof-of-possession ``signature``
header.

The signed blob is:
  version(4 bytes BE) + NUL + filetime(8 bytes BE) + NUL + METHOD + NUL +
  path_and_query + NUL + authorization + NUL + body[:8192] + NUL

The header value is base64(version + filetime + r||s).
"""

import hashlib
import json
import logging
import struct
import time
import urllib.parse

import ecdsa

from xbox_codec import base64_encode, base64url_decode, base64url_encode
from xbox_errors import CryptoError, DecodeError

log = logging.getLogger(__name__)

# 100-ns ticks between 1601-01-01 and 1970-01-01
_FILETIME_EPOCH_OFFSET = 116444736000000000


def filetime(timestamp):
    """Unix seconds -> Windows FILETIME."""
    return _FILETIME_EPOCH_OFFSET + int(timestamp * 10_000_000)


def build_signing_payload(method, url, authorization, body, ft, version=1):
    parsed = urllib.parse.urlparse(url)
    path_and_query = parsed.path
    if parsed.query:
        path_and_query += "?" + parsed.query
    if isinstance(body, str):
        body = body.encode("utf-8")
    payload = struct.pack(">I", version) + b"\x00"
    payload += struct.pack(">Q", ft) + b"\x00"
    payload += method.upper().encode("ascii") + b"\x00"
    payload += path_and_query.encode("ascii") + b"\x00"
    payload += (authorization or "").encode("ascii") + b"\x00"
    payload += body[:RequestSigner.MAX_BODY_BYTES] + b"\x00"
    return payload


class RequestSigner:
    """Device key pair; signs Xbox Live requests and exports the JWK proof key."""

    SIGNATURE_VERSION = 1
    MAX_BODY_BYTES = 8192

    def __init__(self, signing_key):
        self.signing_key = signing_key
        self.verifying_key = signing_key.get_verifying_key()

    @classmethod
    def generate(cls):
        try:
            sk = ecdsa.SigningKey.generate(curve=ecdsa.NIST256p, hashfunc=hashlib.sha256)
        except Exception as e:
            raise CryptoError(f"Key generation failed: {e}") from e
        return cls(sk)

    @classmethod
    def from_json(cls, text):
        """Load a private JWK (as produced by ``to_json(True)``)."""
        try:
            jwk = json.loads(text) if isinstance(text, str) else text
            d_bytes = base64url_decode(jwk["d"])
            sk = ecdsa.SigningKey.from_string(
                d_bytes, curve=ecdsa.NIST256p, hashfunc=hashlib.sha256)
        except (ValueError, KeyError, TypeError, AttributeError, DecodeError,
                ecdsa.MalformedPointError) as e:
            raise CryptoError(f"Could not parse device key: {e}") from e
        return cls(sk)

    def _jwk(self, include_private):
        pub = self.verifying_key.to_string()
        jwk = {
            "kty": "EC", "crv": "P-256",
            "x": base64url_encode(pub[:32]),
            "y": base64url_encode(pub[32:]),
        }
        if include_private:
            jwk["d"] = base64url_encode(self.signing_key.to_string())
        return jwk

    def to_json(self, include_private=False):
        return json.dumps(self._jwk(include_private))

    @property
    def proof_key(self):
        """Public JWK sent as ``ProofKey`` in device and SISU requests."""
        jwk = self._jwk(False)
        jwk["alg"] = "ES256"
        jwk["use"] = "sig"
        return jwk

    def sign(self, url, authorization="", body=b"", timestamp=None, method="POST"):
        """Return the raw header bytes: version + filetime + 64-byte signature."""
        if timestamp is None:
            timestamp = time.time()
        ft = filetime(timestamp)
        payload = build_signing_payload(
            method, url, authorization, body, ft, self.SIGNATURE_VERSION)
        digest = hashlib.sha256(payload).digest()
        try:
            signature = self.signing_key.sign_digest_deterministic(
                digest, hashfunc=hashlib.sha256, sigencode=ecdsa.util.sigencode_string)
        except Exception as e:
            raise CryptoError(f"Signing failed: {e}") from e
        return struct.pack(">I", self.SIGNATURE_VERSION) + struct.pack(">Q", ft) + signature

    def signature_header(self, url, authorization="", body=b"", timestamp=None, method="POST"):
        return base64_encode(self.sign(url, authorization, body, timestamp, method))


def load_verifying_key(text):
    """Public key from a JWK JSON string (private part ignored)."""
    try:
        jwk = json.loads(text) if isinstance(text, str) else text
        raw = base64url_decode(jwk["x"]) + base64url_decode(jwk["y"])
        return ecdsa.VerifyingKey.from_string(
            raw, curve=ecdsa.NIST256p, hashfunc=hashlib.sha256)
    except (ValueError, KeyError, TypeError, DecodeError, ecdsa.MalformedPointError) as e:
        raise CryptoError(f"Could not parse public key: {e}") from e


def verify_signature(public_jwk, header, url, authorization="", body=b"", method="POST"):
    """Check a signature produced by RequestSigner.sign against a public JWK."""
    vk = load_verifying_key(public_jwk)
    version = struct.unpack(">I", header[:4])[0]
    ft = struct.unpack(">Q", header[4:12])[0]
    payload = build_signing_payload(method, url, authorization, body, ft, version)
    try:
        return vk.verify_digest(
            header[12:], hashlib.sha256(payload).digest(),
            sigdecode=ecdsa.util.sigdecode_string)
    except ecdsa.BadSignatureError:
        return False
