"""Hooks for an optional encryption collaborator.

The store never encrypts anything itself. A ``ContentCodec`` decides, per
document, whether bytes read from disk need decrypting and whether text about
to be saved needs encrypting, and performs both transforms.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from .front_matter import parse_front_matter

AGE_HEADER = b"age-encryption.org/v1"


@runtime_checkable
class ContentCodec(Protocol):
    """Two-way byte transform applied on document load and save."""

    def is_encrypted(self, data: bytes) -> bool:
        ...

    def wants_encryption(self, text: str) -> bool:
        ...

    def encrypt(self, text: str) -> bytes:
        ...

    def decrypt(self, data: bytes) -> str:
        ...


def is_age_encrypted(data: bytes) -> bool:
    """Check for the age v1 format header."""
    if len(data) < 16:
        return False
    return data.startswith(AGE_HEADER)


def has_encrypted_front_matter(text: str) -> bool:
    """Check whether front matter asks for encryption (``encrypted: true`` or ``yes``)."""
    flag = parse_front_matter(text).get("encrypted")
    if isinstance(flag, str):
        return flag.strip().lower() in ("true", "yes")
    return flag is True


class FrontMatterCodec(ABC):
    """Codec base using the age header and front matter predicates.

    Subclasses supply ``encrypt`` and ``decrypt``.
    """

    def is_encrypted(self, data: bytes) -> bool:
        return is_age_encrypted(data)

    def wants_encryption(self, text: str) -> bool:
        return has_encrypted_front_matter(text)

    @abstractmethod
    def encrypt(self, text: str) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, data: bytes) -> str:
        ...
