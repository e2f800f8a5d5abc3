"""
Provider literals as versioned configuration.

Alphabets, shifts, fingerprint fields and endpoint paths change whenever a
provider rotates its scheme. They live here, one frozen profile per provider,
so a rotation means bumping a version and editing data, and a stale profile
fails validation instead of producing a wrong URL.

Base URLs are placeholders; deployments set DRIFTWOOD_<PROVIDER>_BASE.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from .base import DecodeChain, DecodeStage
from .stages import chain

S = DecodeStage.of


@dataclass(frozen=True)
class SchemeProfile:
    name: str
    version: str
    base_url: str
    chains: tuple[DecodeChain, ...] = ()
    placeholders: tuple[str, ...] = ()
    literals: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def literal(self, key: str, default: Any = None) -> Any:
        return self.literals.get(key, default)

    def with_base(self, base_url: Optional[str]) -> "SchemeProfile":
        return replace(self, base_url=base_url.rstrip("/")) if base_url else self


# ──────────────────────────────
#  Embed chain (hidden div payload)
# ──────────────────────────────
PLAYERJS_ALPHABET = "ABCDEFGHIJKLMabcdefghijklmNOPQRSTUVWXYZnopqrstuvwxyz0123456789+/="

_SHIFT_CANDIDATES = (3, 5, 7, 1, 2, 4, 6)

EMBEDCHAIN = SchemeProfile(
    name="embedchain",
    version="2024.12",
    base_url="https://embed.example",
    chains=(
        chain("rot3", S("rot", n=3), prefix="eqqmp://", version="2024.12"),
        chain("playerjs-0", S("strip_prefix", prefix="#0"),
              S("alphabet_base64", alphabet=PLAYERJS_ALPHABET), prefix="#0", version="2024.12"),
        chain("playerjs-1", S("strip_prefix", prefix="#1"), S("replace", old="#", new="+"),
              S("alphabet_base64", alphabet=PLAYERJS_ALPHABET), prefix="#1", version="2024.12"),
        *(
            chain(f"reversed-base64-shift{k}", S("strip_prefix", prefix="="), S("reverse"),
                  S("base64"), S("shift", delta=k), version="2024.12")
            for k in _SHIFT_CANDIDATES
        ),
        chain("reverse-shift-hex", S("reverse"), S("shift", delta=1), S("hex"), version="2024.12"),
        chain("base64", S("base64"), version="2024.12"),
    ),
    placeholders=("stream.example",),
    literals={
        "embed_path": "/embed/{type}/{id}",
        "episode_path": "/embed/tv/{id}/{season}/{episode}",
        "player_kinds": ("prorcp", "srcrcp"),
        "challenge_markers": ("cf-turnstile", "challenge-platform"),
        "skip_hosts": ("app2.", "app3."),
        "proxy_hosts": ("stream.example",),
    },
)


# ──────────────────────────────
#  Packed script host
# ──────────────────────────────
PACKEDHOST = SchemeProfile(
    name="packedhost",
    version="2024.10",
    base_url="https://packed.example",
    literals={
        "embed_path": "/e/{id}",
        "episode_path": "/e/{id}/{season}/{episode}",
        "file_pattern": r'file:\s*"([^"]+)"',
    },
)


# ──────────────────────────────
#  XOR keystream API
# ──────────────────────────────
KEYSTREAM_ALPHABET = "ZYXWVUTSRQPONMLKJIHGFEDCBAzyxwvutsrqponmlkjihgfedcba9876543210/+"

KEYSTREAM = SchemeProfile(
    name="keystream",
    version="2025.01",
    base_url="https://keystream.example",
    literals={
        "source_path": "/api/source/{type}/{id}",
        "episode_path": "/api/source/tv/{id}/{season}/{episode}",
        "alphabet": KEYSTREAM_ALPHABET,
        "keystream_length": 64,
        "hash_rounds": 2,
        # Environment the browser player reports; hashed into the fingerprint.
        "fingerprint_fields": (
            "2560x1440", 24,
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWe",
            "Win32", "en-US", 0, "iVBORw0KGgoAAAANSUhEUgAAASwA",
        ),
    },
)


# ──────────────────────────────
#  Signed API with opaque decrypt
# ──────────────────────────────
SIGNEDAPI = SchemeProfile(
    name="signedapi",
    version="2025.02",
    base_url="https://signed.example",
    literals={
        "time_path": "/api/time",
        "source_path": "/api/{type}/{id}/images",
        "episode_path": "/api/tv/{id}/season/{season}/episode/{episode}/images",
        "referer": "https://signed.example/",
    },
)


PROFILES = {p.name: p for p in (EMBEDCHAIN, PACKEDHOST, KEYSTREAM, SIGNEDAPI)}


def get_profile(name: str, bases: Optional[dict[str, str]] = None) -> SchemeProfile:
    profile = PROFILES[name]
    return profile.with_base((bases or {}).get(name))
