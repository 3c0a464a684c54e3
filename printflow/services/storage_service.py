from __future__ import annotations

import hashlib
import hmac
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlencode

from printflow.errors import NotFoundError, ValidationError

KEY_RE = re.compile(r'^[0-9a-f]{2}/[0-9a-f]{64}(\.[a-z0-9]{1,8})?$')
SUFFIX_RE = re.compile(r'^\.[a-z0-9]{1,8}$')


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    checksum: str


class ObjectStorage(Protocol):
    def put(self, data: bytes, metadata: dict[str, str] | None = None) -> StoredObject: ...

    def get(self, key: str) -> bytes: ...

    def get_signed_url(self, key: str) -> str: ...

    def verify_signature(self, key: str, expires: int, signature: str) -> bool: ...


class LocalObjectStorage:
    """Content-addressed blobs on local disk with HMAC-signed download links."""

    def __init__(self, root: str | Path, *, signing_key: str, base_url: str, ttl_seconds: int = 3600) -> None:
        self.root = Path(root)
        self.signing_key = signing_key.encode('utf-8')
        self.base_url = base_url.rstrip('/')
        self.ttl_seconds = ttl_seconds

    def _path(self, key: str) -> Path:
        if not KEY_RE.fullmatch(key):
            raise ValidationError.for_field('key', 'Invalid storage key')
        return self.root / key

    def put(self, data: bytes, metadata: dict[str, str] | None = None) -> StoredObject:
        checksum = hashlib.sha256(data).hexdigest()
        suffix = Path((metadata or {}).get('filename', '')).suffix.lower()
        if not SUFFIX_RE.fullmatch(suffix):
            suffix = ''
        key = f'{checksum[:2]}/{checksum}{suffix}'
        path = self._path(key)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + '.tmp')
            tmp.write_bytes(data)
            tmp.replace(path)
        return StoredObject(key=key, size=len(data), checksum=checksum)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise NotFoundError(f'File {key} not found')
        return path.read_bytes()

    def _signature(self, key: str, expires: int) -> str:
        return hmac.new(self.signing_key, f'{key}:{expires}'.encode('utf-8'), hashlib.sha256).hexdigest()

    def get_signed_url(self, key: str, *, now: float | None = None) -> str:
        self._path(key)
        expires = int(now if now is not None else time.time()) + self.ttl_seconds
        query = urlencode({'expires': expires, 'signature': self._signature(key, expires)})
        return f'{self.base_url}/api/files/{key}?{query}'

    def verify_signature(self, key: str, expires: int, signature: str, *, now: float | None = None) -> bool:
        if int(now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(key, expires), signature)
