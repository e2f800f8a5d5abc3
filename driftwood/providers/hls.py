"""
HLS AES-128 handling: key tag parsing, key retrieval and segment decryption.

Per RFC 8216, a segment without an explicit IV uses its media sequence number
as the IV, big-endian, zero-padded to 16 bytes.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from urllib.parse import urlencode, urljoin, urlparse

from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..errors import DecodeError, KeySizeError
from .fetcher import Fetcher, referer_headers

log = logging.getLogger("driftwood.providers.hls")

KEY_SIZE = 16

_KEY_TAG_RE = re.compile(r"^#EXT-X-KEY:(.*)$", re.MULTILINE)
_ATTR_RE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')
_SEQUENCE_RE = re.compile(r"^#EXT-X-MEDIA-SEQUENCE:(\d+)", re.MULTILINE)
_URI_ATTR_RE = re.compile(r'URI="([^"]*)"')

# tags whose URI attribute names a key, and tags whose URI names another playlist or media file
_KEY_URI_TAGS = ("#EXT-X-KEY:", "#EXT-X-SESSION-KEY:")
_MEDIA_URI_TAGS = ("#EXT-X-MEDIA:", "#EXT-X-MAP:", "#EXT-X-I-FRAME-STREAM-INF:")


@dataclass(frozen=True)
class KeyDeclaration:
    method: str
    uri: Optional[str] = None
    iv: Optional[bytes] = None
    keyformat: str = "identity"


@dataclass(frozen=True)
class Segment:
    sequence: int
    uri: str
    key: Optional[KeyDeclaration] = None


def parse_attributes(raw: str) -> dict[str, str]:
    return {name: value.strip('"') for name, value in _ATTR_RE.findall(raw)}


def _parse_iv(raw: Optional[str]) -> Optional[bytes]:
    if not raw:
        return None
    text = raw[2:] if raw.lower().startswith("0x") else raw
    try:
        iv = bytes.fromhex(text.rjust(32, "0"))
    except ValueError:
        raise DecodeError(f"malformed IV {raw!r}")
    if len(iv) != 16:
        raise DecodeError(f"IV must be 16 bytes, got {len(iv)}")
    return iv


def _declaration(raw: str, base_url: Optional[str]) -> KeyDeclaration:
    attrs = parse_attributes(raw)
    uri = attrs.get("URI")
    if uri and base_url:
        uri = urljoin(base_url, uri)
    return KeyDeclaration(
        method=attrs.get("METHOD", "NONE").upper(),
        uri=uri,
        iv=_parse_iv(attrs.get("IV")),
        keyformat=attrs.get("KEYFORMAT", "identity"),
    )


def parse_key_declaration(manifest: str, base_url: Optional[str] = None) -> Optional[KeyDeclaration]:
    """First key tag that actually encrypts, or None for a clear playlist."""
    for match in _KEY_TAG_RE.finditer(manifest):
        decl = _declaration(match.group(1), base_url)
        if decl.method != "NONE":
            return decl
    return None


def media_sequence(manifest: str) -> int:
    m = _SEQUENCE_RE.search(manifest)
    return int(m.group(1)) if m else 0


def iter_segments(manifest: str, base_url: Optional[str] = None) -> list[Segment]:
    segments = []
    sequence = media_sequence(manifest)
    key: Optional[KeyDeclaration] = None
    for line in manifest.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#EXT-X-KEY:"):
            decl = _declaration(line[len("#EXT-X-KEY:"):], base_url)
            key = None if decl.method == "NONE" else decl
            continue
        if line.startswith("#"):
            continue
        uri = urljoin(base_url, line) if base_url else line
        segments.append(Segment(sequence=sequence, uri=uri, key=key))
        sequence += 1
    return segments


def is_playlist(url: str, content_type: Optional[str] = None) -> bool:
    if content_type and "mpegurl" in content_type.lower():
        return True
    return urlparse(url).path.lower().endswith(".m3u8")


class PlaylistRewriter:
    """Points every URI in a playlist back at our own /segment and /key endpoints.

    Segment lines and media URIs go to /segment, key URIs to /key. Relative
    URIs resolve against the playlist's own URL first. A master playlist
    rewrites the same way, so each variant comes back through /segment and is
    rewritten in turn. Non-http URIs (data:, skd:) are left alone.
    """

    def __init__(self, proxy_origin: str, *, referer: Optional[str] = None):
        self.origin = proxy_origin.rstrip("/")
        self.referer = referer

    def proxied(self, uri: str, base_url: str, endpoint: str = "segment") -> str:
        absolute = urljoin(base_url, uri)
        if urlparse(absolute).scheme not in ("http", "https"):
            return uri
        params = {"url": absolute}
        if self.referer:
            params["referer"] = self.referer
        return f"{self.origin}/{endpoint}?{urlencode(params)}"

    def _rewrite_attr(self, line: str, base_url: str, endpoint: str) -> str:
        return _URI_ATTR_RE.sub(
            lambda m: f'URI="{self.proxied(m.group(1), base_url, endpoint)}"', line)

    def rewrite(self, manifest: str, base_url: str) -> str:
        out = []
        for line in manifest.splitlines():
            stripped = line.strip()
            if not stripped:
                out.append(line)
            elif stripped.startswith(_KEY_URI_TAGS):
                out.append(self._rewrite_attr(stripped, base_url, "key"))
            elif stripped.startswith(_MEDIA_URI_TAGS):
                out.append(self._rewrite_attr(stripped, base_url, "segment"))
            elif stripped.startswith("#"):
                out.append(stripped)
            else:
                out.append(self.proxied(stripped, base_url))
        return "\n".join(out) + "\n"


def rewrite_playlist(manifest: str, base_url: str, proxy_origin: str,
                     referer: Optional[str] = None) -> str:
    return PlaylistRewriter(proxy_origin, referer=referer).rewrite(manifest, base_url)


def sequence_iv(sequence: int) -> bytes:
    return sequence.to_bytes(16, "big")


def decrypt_segment(data: bytes, key: bytes, iv: bytes, *, unpad: bool = True) -> bytes:
    if len(key) != KEY_SIZE:
        raise KeySizeError(len(key), KEY_SIZE)
    if len(iv) != 16:
        raise DecodeError(f"IV must be 16 bytes, got {len(iv)}")
    if len(data) % 16:
        raise DecodeError(f"ciphertext length {len(data)} is not a multiple of 16")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    plain = decryptor.update(data) + decryptor.finalize()
    if not unpad:
        return plain
    unpadder = sym_padding.PKCS7(128).unpadder()
    try:
        return unpadder.update(plain) + unpadder.finalize()
    except ValueError:
        raise DecodeError("bad PKCS7 padding (wrong key or IV?)")


async def fetch_key(
    fetcher: Fetcher,
    uri: str,
    *,
    referer: Optional[str] = None,
    via_gateway: Optional[bool] = None,
) -> bytes:
    resp = await fetcher.get_bytes(uri, headers=referer_headers(referer),
                                   via_gateway=via_gateway, scope="key")
    if len(resp.body) != KEY_SIZE:
        raise KeySizeError(len(resp.body), KEY_SIZE)
    return resp.body


class SegmentDecryptor:
    """Walks a media playlist and yields decrypted segment bytes in order."""

    def __init__(self, fetcher: Fetcher, *, referer: Optional[str] = None,
                 key_via_gateway: Optional[bool] = None,
                 segment_via_gateway: Optional[bool] = None):
        self.fetcher = fetcher
        self.referer = referer
        self.key_via_gateway = key_via_gateway
        self.segment_via_gateway = segment_via_gateway
        self._keys: dict[str, bytes] = {}

    async def key_for(self, decl: KeyDeclaration) -> bytes:
        if decl.method != "AES-128":
            raise DecodeError(f"unsupported key method {decl.method}")
        if not decl.uri:
            raise DecodeError("key tag has no URI")
        if decl.uri not in self._keys:
            self._keys[decl.uri] = await fetch_key(
                self.fetcher, decl.uri, referer=self.referer, via_gateway=self.key_via_gateway)
        return self._keys[decl.uri]

    async def decrypt_playlist(self, manifest: str, base_url: Optional[str] = None
                               ) -> AsyncIterator[tuple[int, bytes]]:
        for seg in iter_segments(manifest, base_url):
            resp = await self.fetcher.get_bytes(
                seg.uri, headers=referer_headers(self.referer),
                via_gateway=self.segment_via_gateway, scope="segment")
            if seg.key is None:
                yield seg.sequence, resp.body
                continue
            key = await self.key_for(seg.key)
            iv = seg.key.iv or sequence_iv(seg.sequence)
            yield seg.sequence, decrypt_segment(resp.body, key, iv)
