"""NFT metadata decoding and payload download helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import mimetypes
from pathlib import Path
import struct
from typing import Any, Dict, List, Optional
import urllib.error
import urllib.request

from solders.pubkey import Pubkey

from .constants import MEDIA_FILE_TYPES

_USER_AGENT = "scriptorium/0.1"


@dataclass
class TokenMetadata:
    update_authority: Pubkey
    mint: Pubkey
    name: str
    symbol: str
    uri: str


def _read_borsh_string(data: bytes, offset: int) -> tuple[str, int]:
    if offset + 4 > len(data):
        raise ValueError("token metadata truncated")
    (size,) = struct.unpack_from("<I", data, offset)
    start = offset + 4
    end = start + size
    if end > len(data):
        raise ValueError("token metadata truncated")
    return data[start:end].decode("utf-8", errors="replace").rstrip("\x00"), end


def decode_token_metadata(data: bytes) -> TokenMetadata:
    data = bytes(data)
    if len(data) < 65:
        raise ValueError("token metadata account too small")
    update_authority = Pubkey.from_bytes(data[1:33])
    mint = Pubkey.from_bytes(data[33:65])
    name, offset = _read_borsh_string(data, 65)
    symbol, offset = _read_borsh_string(data, offset)
    uri, _offset = _read_borsh_string(data, offset)
    return TokenMetadata(update_authority=update_authority, mint=mint, name=name, symbol=symbol, uri=uri)


@dataclass
class MetadataFile:
    uri: str
    type: Optional[str] = None


@dataclass
class NftMetadata:
    name: Optional[str] = None
    image: Optional[str] = None
    animation_url: Optional[str] = None
    files: List[MetadataFile] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: bytes | str) -> "NftMetadata":
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"NFT metadata is not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("NFT metadata must be a JSON object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls, parsed: Dict[str, Any]) -> "NftMetadata":
        files: List[MetadataFile] = []
        properties = parsed.get("properties")
        raw_files = properties.get("files") if isinstance(properties, dict) else None
        if isinstance(raw_files, list):
            for item in raw_files:
                if not isinstance(item, dict) or not isinstance(item.get("uri"), str):
                    continue
                file_type = item.get("type") if isinstance(item.get("type"), str) else None
                files.append(MetadataFile(uri=item["uri"], type=file_type))
        return cls(
            name=parsed.get("name") if isinstance(parsed.get("name"), str) else None,
            image=parsed.get("image") if isinstance(parsed.get("image"), str) else None,
            animation_url=parsed.get("animation_url") if isinstance(parsed.get("animation_url"), str) else None,
            files=files,
        )

    def media_uri(self) -> Optional[str]:
        if self.animation_url:
            return self.animation_url
        if self.image:
            return self.image
        for item in self.files:
            if item.type in MEDIA_FILE_TYPES:
                return item.uri
        return None


def fetch_bytes(url: str, timeout: float = 60.0) -> tuple[bytes, Optional[str]]:
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.read(), resp.headers.get_content_type()
    except urllib.error.HTTPError as exc:
        raise ValueError(f"Download failed for {url}: HTTP {exc.code} {exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise ValueError(f"Download failed for {url}: {exc.reason}") from exc


def _media_suffix(url: str, content_type: Optional[str]) -> str:
    if content_type and content_type != "application/octet-stream":
        guessed = mimetypes.guess_extension(content_type)
        if guessed:
            return guessed
    suffix = Path(url.split("?", 1)[0]).suffix
    return suffix or ".bin"


def find_cached_media(cache_dir: Path, mint: str) -> Optional[Path]:
    for path in sorted(cache_dir.glob(f"{mint}.*")):
        if path.suffix in {".json", ".metadata"}:
            continue
        return path
    return None


def load_json_payload(cache_dir: Path, mint: str, uri: str) -> bytes:
    cache_file = cache_dir / f"{mint}.json"
    if cache_file.exists():
        return cache_file.read_bytes()
    data, _content_type = fetch_bytes(uri)
    cache_dir.mkdir(parents=True, exist_ok=True)
    cache_file.write_bytes(data)
    return data


def load_media_payload(cache_dir: Path, mint: str, uri: str) -> bytes:
    cached = find_cached_media(cache_dir, mint) if cache_dir.exists() else None
    if cached is not None:
        return cached.read_bytes()
    data, content_type = fetch_bytes(uri)
    cache_dir.mkdir(parents=True, exist_ok=True)
    (cache_dir / f"{mint}{_media_suffix(uri, content_type)}").write_bytes(data)
    return data
