"""
Document identity: a content-derived id that survives rename and move.

Annotations used to be keyed by the document's URI. The canonical id is a
SHA-256 over the file size and its content (or head/middle/tail samples of
large files); the URI is kept as the legacy id so old rows can be migrated.
"""

import hashlib
import logging
import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Union

logger = logging.getLogger(__name__)

DOC_ID_PREFIX = "sha256:"
DOC_ID_DOMAIN_TAG = b"odpdf-docid-v1"
SAMPLE_BYTES = 64 * 1024

_OFFSET = struct.Struct(">q")
_CHUNK = 16 * 1024


@dataclass(frozen=True)
class DocumentIdentity:
    doc_id: str
    legacy_doc_id: str


def _digest_range(f: BinaryIO, digest, length: int) -> None:
    remaining = length
    while remaining > 0:
        chunk = f.read(min(_CHUNK, remaining))
        if not chunk:
            break
        digest.update(chunk)
        remaining -= len(chunk)


def _sample(f: BinaryIO, digest, offset: int) -> None:
    digest.update(_OFFSET.pack(offset))
    f.seek(offset)
    _digest_range(f, digest, SAMPLE_BYTES)


def hash_stream(f: BinaryIO, size: int) -> str:
    """Hex content hash of a seekable binary stream of ``size`` bytes."""
    digest = hashlib.sha256()
    digest.update(DOC_ID_DOMAIN_TAG)
    digest.update(_OFFSET.pack(size))

    if size <= SAMPLE_BYTES * 3:
        f.seek(0)
        _digest_range(f, digest, size)
    else:
        _sample(f, digest, 0)
        _sample(f, digest, max(0, size // 2 - SAMPLE_BYTES // 2))
        _sample(f, digest, max(0, size - SAMPLE_BYTES))
    return digest.hexdigest()


def compute_doc_id(path: Union[str, Path]) -> str:
    """Canonical ``sha256:`` id of the file at ``path``."""
    path = Path(path)
    size = os.path.getsize(path)
    with open(path, "rb") as f:
        return DOC_ID_PREFIX + hash_stream(f, size)


def legacy_doc_id(path: Union[str, Path]) -> str:
    """The URI-style id older stores used."""
    return Path(path).resolve().as_uri()


def resolve_identity(path: Union[str, Path]) -> DocumentIdentity:
    """
    Canonical and legacy ids for a document file. When the content cannot be
    hashed the legacy id doubles as the canonical one.
    """
    legacy = legacy_doc_id(path)
    try:
        doc_id = compute_doc_id(path)
    except OSError as e:
        logger.warning(f"Could not hash {path}, keying annotations by URI: {e}")
        doc_id = legacy
    return DocumentIdentity(doc_id=doc_id, legacy_doc_id=legacy)
