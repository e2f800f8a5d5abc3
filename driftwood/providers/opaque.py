"""
Call contract for providers whose decrypt routine ships as an opaque compiled
blob (WASM and friends).

We do not reimplement those routines. We build the signed request the
provider expects, then hand the ciphertext to a delegate that hosts the real
routine: ``(ciphertext, api_key) -> plaintext``.
"""
from __future__ import annotations
import base64
import hashlib
import hmac
import logging
import secrets
import time
from typing import Optional, Protocol

from ..errors import DecodeError, UpstreamUnavailable
from .fetcher import Fetcher

log = logging.getLogger("driftwood.providers.opaque")


def make_nonce() -> str:
    """22 alphanumeric characters: base64 of random bytes with +/= dropped."""
    nonce = ""
    while len(nonce) < 22:
        raw = base64.b64encode(secrets.token_bytes(16)).decode("ascii")
        nonce += raw.replace("/", "").replace("+", "").replace("=", "")
    return nonce[:22]


def sign(api_key: str, timestamp: int, nonce: str, path: str) -> str:
    message = f"{api_key}:{timestamp}:{nonce}:{path}".encode("utf-8")
    digest = hmac.new(api_key.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def signed_headers(api_key: str, path: str, *, timestamp: Optional[int] = None,
                   nonce: Optional[str] = None) -> dict[str, str]:
    timestamp = int(time.time()) if timestamp is None else int(timestamp)
    nonce = nonce or make_nonce()
    return {
        "X-Api-Key": api_key,
        "X-Request-Timestamp": str(timestamp),
        "X-Request-Nonce": nonce,
        "X-Request-Signature": sign(api_key, timestamp, nonce, path),
    }


class ServerClock:
    """Tracks the offset between our clock and a provider's time endpoint.

    Signed requests are rejected when the timestamp drifts, so the offset is
    measured once and applied to every later timestamp.
    """

    def __init__(self):
        self.offset = 0.0

    def now(self) -> int:
        return int(time.time() + self.offset)

    async def sync(self, fetcher: Fetcher, url: str) -> float:
        before = time.time()
        data = await fetcher.get_json(url, params={"t": int(before * 1000)})
        after = time.time()
        if not isinstance(data, dict) or "timestamp" not in data:
            raise DecodeError(f"time endpoint {url} returned no timestamp")
        server = float(data["timestamp"])
        self.offset = server + (after - before) / 2 - after
        log.debug("Server clock offset %.2fs", self.offset)
        return self.offset


class DecryptDelegate(Protocol):
    async def __call__(self, ciphertext: str, api_key: str) -> str: ...


class RemoteDecryptDelegate:
    """Delegate backed by an operator-run service that hosts the routine.

    Contract: POST {endpoint} with {"ciphertext", "apiKey"} and receive
    {"plaintext"}. Anything else is treated as the provider having moved on.
    """

    def __init__(self, fetcher: Fetcher, endpoint: str):
        self.fetcher = fetcher
        self.endpoint = endpoint

    async def __call__(self, ciphertext: str, api_key: str) -> str:
        resp = await self.fetcher.request(
            "POST", self.endpoint, json_body={"ciphertext": ciphertext, "apiKey": api_key})
        data = resp.json()
        if not isinstance(data, dict):
            raise DecodeError("decrypt service returned a non-object")
        if data.get("error"):
            raise UpstreamUnavailable(f"decrypt service error: {data['error']}")
        plaintext = data.get("plaintext")
        if not isinstance(plaintext, str) or not plaintext:
            raise DecodeError("decrypt service returned no plaintext")
        return plaintext
