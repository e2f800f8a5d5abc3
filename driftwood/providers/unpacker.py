"""
JavaScript p,a,c,k,e,d unpacker.

Many embed hosts ship their player config through Dean Edwards' packer:
  eval(function(p,a,c,k,e,d){...}('payload',radix,count,'w0|w1|...'.split('|')))

Unpacking mirrors the packer's own loop: walk token indices from the highest
down, render each as a base-N numeral and swap whole-word occurrences for the
dictionary word.
"""
from __future__ import annotations
import re

from ..errors import DecodeError

_PACKED_RE = re.compile(
    r"eval\(function\(p,a,c,k,e,[dr]\)\{.*?\}\('(.*?)',(\d+),(\d+),'(.*?)'\.split\('\|'\)",
    re.DOTALL,
)

_CHARS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _numeral(index: int, radix: int) -> str:
    """Token the packer emits for dictionary slot `index`."""
    digits = ""
    while True:
        index, r = divmod(index, radix)
        digits = _CHARS[r] + digits
        if not index:
            return digits


def detect(text: str) -> bool:
    """True when a packer block is present."""
    return bool(_PACKED_RE.search(text))


def unpack_payload(payload: str, radix: int, count: int, words: list[str]) -> str:
    if not 2 <= radix <= 62:
        raise DecodeError(f"unsupported packer radix {radix}")
    words = list(words) + [""] * max(0, count - len(words))

    for idx in range(count - 1, -1, -1):
        word = words[idx]
        if not word:
            continue
        token = _numeral(idx, radix)
        payload = re.sub(r"\b" + re.escape(token) + r"\b", lambda _m, w=word: w, payload)
    return payload


def unpack(text: str) -> str:
    """Unpack the first packer block; text without one comes back as is."""
    match = _PACKED_RE.search(text)
    if not match:
        return text

    payload, radix_s, count_s, symtab_raw = match.groups()
    payload = payload.replace("\\'", "'").replace("\\\\", "\\")
    return unpack_payload(payload, int(radix_s), int(count_s), symtab_raw.split("|"))
