"""
Decode stages: named, parameterised transforms that providers chain together.

A provider's obfuscation is described as data (a DecodeChain) rather than as
code, so a change on their side shows up as a chain that no longer validates
instead of a silently wrong URL.
"""
from __future__ import annotations
import logging
import re
from typing import Callable, Iterable, Optional, Sequence

from ..errors import DecodeError, DecodeSchemeChanged
from . import decoders, unpacker
from .base import DecodeChain, DecodeStage

log = logging.getLogger("driftwood.providers.stages")

Data = decoders.Data


def _alphabet_base64(data: Data, alphabet: str) -> bytes:
    return decoders.AlphabetBase64(alphabet).decode(decoders.to_text(data))


def _xor(data: Data, timestamp, fingerprint: str, length: int = 32, rounds: int = 1) -> bytes:
    ks = decoders.derive_keystream(timestamp, fingerprint, length, rounds)
    return decoders.xor_keystream(data, ks)


def _strip_prefix(data: Data, prefix: str) -> str:
    text = decoders.to_text(data)
    return text[len(prefix):] if text.startswith(prefix) else text


STAGES: dict[str, Callable[..., Data]] = {
    "reverse": lambda d: decoders.reverse(d),
    "shift": lambda d, delta: decoders.shift_chars(d, int(delta)),
    "rot": lambda d, n: decoders.rotate_letters(decoders.to_text(d), int(n)),
    "hex": lambda d: decoders.hex_decode(decoders.to_text(d)),
    "base64": lambda d: decoders.b64decode_loose(decoders.to_text(d)),
    "alphabet_base64": _alphabet_base64,
    "strip_prefix": _strip_prefix,
    "replace": lambda d, old, new: decoders.to_text(d).replace(old, new),
    "xor_keystream": _xor,
    "unpack": lambda d: unpacker.unpack(decoders.to_text(d)),
    "numeral_script": lambda d, alphabet, offset, base: decoders.decode_numeral_script(
        decoders.to_text(d), alphabet, int(offset), int(base)),
}


def chain(name: str, *stages: DecodeStage, version: str = "1",
          prefix: Optional[str] = None) -> DecodeChain:
    for stage in stages:
        if stage.kind not in STAGES:
            raise ValueError(f"unknown decode stage {stage.kind!r} in chain {name}")
    return DecodeChain(name=name, stages=tuple(stages), version=version, prefix=prefix)


def run_stage(stage: DecodeStage, data: Data) -> Data:
    fn = STAGES.get(stage.kind)
    if fn is None:
        raise ValueError(f"unknown decode stage {stage.kind!r}")
    try:
        return fn(data, **dict(stage.params))
    except DecodeError:
        raise
    except (ValueError, TypeError, UnicodeError) as e:
        raise DecodeError(f"stage {stage} failed: {e}")


def run_chain(decode_chain: DecodeChain, payload: Data) -> str:
    data = payload
    for stage in decode_chain.stages:
        data = run_stage(stage, data)
    return decoders.to_text(data)


# ──────────────────────────────
#  Validation
# ──────────────────────────────
_MANIFEST_RE = re.compile(r"https?://[^\s\"'<>]+?\.m3u8[^\s\"'<>]*", re.IGNORECASE)
_MP4_RE = re.compile(r"https?://[^\s\"'<>]+?\.mp4[^\s\"'<>]*", re.IGNORECASE)
_PLACEHOLDER_RE = re.compile(r"\{v(\d+)\}")


def find_manifest_urls(text: str, *, placeholders: Sequence[str] = (),
                       allow_mp4: bool = False) -> list[str]:
    """Manifest URLs in decoded text, placeholders filled, order kept, no repeats."""
    found = _MANIFEST_RE.findall(text)
    if allow_mp4:
        found += _MP4_RE.findall(text)
    urls = []
    for url in found:
        if placeholders:
            url = _PLACEHOLDER_RE.sub(
                lambda m: placeholders[(int(m.group(1)) - 1) % len(placeholders)], url)
        if _PLACEHOLDER_RE.search(url) or url in urls:
            continue
        urls.append(url)
    return urls


Validator = Callable[[str], list[str]]


def decode_with_hypotheses(chains: Iterable[DecodeChain], payload: str,
                           validator: Validator) -> tuple[DecodeChain, list[str]]:
    """Run each applicable chain; accept the first whose output validates.

    Returns the winning chain and the validator's findings. Raises
    DecodeSchemeChanged listing every chain tried when none validates.
    """
    tried = []
    for candidate in chains:
        if candidate.prefix is not None and not payload.startswith(candidate.prefix):
            continue
        try:
            decoded = run_chain(candidate, payload)
        except DecodeError as e:
            log.debug("Chain %s rejected: %s", candidate.label, e)
            tried.append(f"{candidate.label}: {e}")
            continue
        found = validator(decoded)
        if found:
            log.info("Chain %s validated", candidate.label)
            return candidate, found
        log.debug("Chain %s produced no manifest marker", candidate.label)
        tried.append(f"{candidate.label}: no manifest marker")

    if not tried:
        raise DecodeSchemeChanged(f"no decode chain applies to payload starting {payload[:8]!r}")
    raise DecodeSchemeChanged("no decode chain validated (" + "; ".join(tried) + ")")
