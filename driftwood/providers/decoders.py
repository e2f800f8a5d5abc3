"""
Stateless decode primitives shared by every provider.

Providers rarely invent new cryptography; they reshuffle the same handful of
tricks (swapped base64 alphabets, reversed strings, per-char shifts, XOR with
a derived keystream). Each trick lives here once, as a pure function.
"""
from __future__ import annotations
import base64
import binascii
import hashlib
import re
import string
from functools import lru_cache
from typing import Iterable, Union

from ..errors import DecodeError

Data = Union[str, bytes]

STANDARD_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"
_B36 = string.digits + string.ascii_lowercase


# ──────────────────────────────
#  str <-> bytes
# ──────────────────────────────
def to_bytes(data: Data) -> bytes:
    if isinstance(data, bytes):
        return data
    try:
        return data.encode("latin-1")
    except UnicodeEncodeError:
        return data.encode("utf-8")


def to_text(data: Data) -> str:
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _repad(text: str, pad: str = "=") -> str:
    text = text.rstrip(pad)
    return text + pad * (-len(text) % 4)


# ──────────────────────────────
#  Alphabet-substitution base64
# ──────────────────────────────
class AlphabetBase64:
    """Base64 over a permuted alphabet.

    A 65-character alphabet carries its own padding character in the last
    position; a 64-character one pads with "=".
    """

    def __init__(self, alphabet: str):
        if len(alphabet) == 65:
            alphabet, pad = alphabet[:64], alphabet[64]
        elif len(alphabet) == 64:
            pad = "="
        else:
            raise ValueError(f"alphabet must have 64 or 65 characters, got {len(alphabet)}")
        if sorted(alphabet) != sorted(STANDARD_ALPHABET):
            raise ValueError("alphabet is not a permutation of the base64 alphabet")
        if pad in alphabet:
            raise ValueError("padding character collides with the alphabet")
        self.alphabet = alphabet
        self.pad = pad
        self._to_std = str.maketrans(alphabet + pad, STANDARD_ALPHABET + "=")
        self._from_std = str.maketrans(STANDARD_ALPHABET + "=", alphabet + pad)

    def decode(self, text: str) -> bytes:
        std = "".join(text.split()).translate(self._to_std)
        try:
            return base64.b64decode(_repad(std), validate=False)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"alphabet base64 decode failed: {e}")

    def encode(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii").translate(self._from_std)


def b64decode_loose(text: str) -> bytes:
    """Standard or URL-safe base64 with missing padding tolerated."""
    cleaned = "".join(text.split()).replace("-", "+").replace("_", "/")
    try:
        return base64.b64decode(_repad(cleaned), validate=False)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"base64 decode failed: {e}")


# ──────────────────────────────
#  XOR keystream
# ──────────────────────────────
@lru_cache(maxsize=256)
def derive_keystream(timestamp: Union[int, str], fingerprint: str, length: int = 32,
                     rounds: int = 1) -> bytes:
    """Hash-chain SHA-256 from "<timestamp>:<fingerprint>".

    block_0 = sha256(seed), block_n = sha256(block_{n-1} + seed); the chain is
    re-run ``rounds`` times over its own output before blocks are emitted.
    Cached per argument tuple so repeated requests reuse the stream.
    """
    if length <= 0:
        raise ValueError("keystream length must be positive")
    seed = f"{timestamp}:{fingerprint}".encode("utf-8")
    block = seed
    for _ in range(max(rounds, 1)):
        block = hashlib.sha256(block).digest()
    out = bytearray()
    while len(out) < length:
        out += block
        block = hashlib.sha256(block + seed).digest()
    return bytes(out[:length])


def xor_keystream(data: Data, keystream: bytes) -> bytes:
    """XOR each byte with keystream[i % len]. Symmetric: same call encrypts."""
    if not keystream:
        raise DecodeError("empty keystream")
    raw = to_bytes(data)
    n = len(keystream)
    return bytes(b ^ keystream[i % n] for i, b in enumerate(raw))


def fingerprint_hash(fields: Iterable[object]) -> str:
    """32-bit rolling string hash (h*31 + c) of the ":"-joined fields, base 36."""
    text = ":".join(str(f) for f in fields)
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    h = abs(h)
    if h == 0:
        return "0"
    digits = []
    while h:
        h, r = divmod(h, 36)
        digits.append(_B36[r])
    return "".join(reversed(digits))


# ──────────────────────────────
#  Text transforms
# ──────────────────────────────
def reverse(data: Data) -> Data:
    return data[::-1]


def shift_chars(data: Data, delta: int) -> Data:
    """Subtract ``delta`` from every character / byte."""
    if isinstance(data, bytes):
        return bytes((b - delta) % 256 for b in data)
    out = []
    for ch in data:
        code = ord(ch) - delta
        if code < 0:
            raise DecodeError(f"shift by {delta} underflows at {ch!r}")
        out.append(chr(code))
    return "".join(out)


def rotate_letters(text: str, n: int) -> str:
    """ROT-n on ASCII letters only; digits and symbols are untouched."""
    out = []
    for ch in text:
        if "a" <= ch <= "z":
            out.append(chr((ord(ch) - 97 + n) % 26 + 97))
        elif "A" <= ch <= "Z":
            out.append(chr((ord(ch) - 65 + n) % 26 + 65))
        else:
            out.append(ch)
    return "".join(out)


_NON_HEX_RE = re.compile(r"[^0-9a-fA-F]")


def hex_decode(text: str) -> bytes:
    cleaned = _NON_HEX_RE.sub("", text)
    if len(cleaned) % 2:
        cleaned = cleaned[:-1]
    if not cleaned:
        raise DecodeError("no hex digits in payload")
    return bytes.fromhex(cleaned)


def decode_numeral_script(encoded: str, alphabet: str, offset: int, base: int) -> str:
    """Decode the "eval(function(h,u,n,t,e,r)" numeral scheme.

    The payload is a run of segments separated by ``alphabet[base]``. Each
    alphabet character stands for its index digit; the digit string is read
    in ``base`` and ``offset`` is subtracted to get a character code.
    """
    if base < 2 or base >= len(alphabet):
        raise DecodeError(f"base {base} does not fit alphabet of {len(alphabet)}")
    delimiter = alphabet[base]
    index = {ch: str(i) for i, ch in enumerate(alphabet)}
    chars = []
    for segment in encoded.split(delimiter):
        if not segment:
            continue
        digits = "".join(index[ch] for ch in segment if ch in index)
        value = 0
        for d in digits:
            value = value * base + int(d)
        code = value - offset
        if 0 < code < 0x110000:
            chars.append(chr(code))
    raw = "".join(chars)
    # escape/decodeURIComponent round trip: latin-1 code points -> utf-8 text
    try:
        return raw.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return raw
