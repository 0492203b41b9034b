"""Provider name budgets for generated resource names.

Every provider constrains the names of the principals we create: AWS role
names may be 64 characters, Google service account ids 6-30 lowercase
characters, custom role ids only ``[a-zA-Z0-9_.]`` and so on. A
:class:`NameBudget` captures one such constraint. Names are built from a
fixed prefix, a truncated and sanitised repository name and a suffix.

The suffix is derived from a digest of the caller supplied parts (for
example the repository and target), so the same repository always maps to
the same name between runs while two repositories sharing a long common
prefix still get distinct names.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

_SUFFIX_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


@dataclass(frozen=True, slots=True)
class NameBudget:
    max_length: int
    invalid_characters: str
    prefix: str = "ci"
    separator: str = "-"
    replacement: str = "-"
    repository_length: int = 18
    suffix_length: int = 8
    lowercase: bool = True

    def sanitise(self, value: str) -> str:
        if self.lowercase:
            value = value.lower()
        return re.sub(self.invalid_characters, self.replacement, value)

    def suffix(self, *parts: str) -> str:
        if self.suffix_length <= 0:
            return ""
        digest = hashlib.blake2b("/".join(parts).encode("utf-8"), digest_size=16).digest()
        number = int.from_bytes(digest, "big")
        characters = []
        for _ in range(self.suffix_length):
            number, index = divmod(number, len(_SUFFIX_ALPHABET))
            characters.append(_SUFFIX_ALPHABET[index])
        return "".join(characters)

    def name(self, repository: str, *salt: str) -> str:
        truncated = self.sanitise(repository)[: self.repository_length]
        suffix = self.suffix(repository, *salt)
        parts = [part for part in (self.prefix, truncated, suffix) if part]
        return self.separator.join(parts)[: self.max_length]


BUDGETS: dict[str, NameBudget] = {
    "aws-role": NameBudget(max_length=64, invalid_characters=r"[^\w+=,.@-]", lowercase=False),
    "aws-policy": NameBudget(max_length=128, invalid_characters=r"[^\w+=,.@-]", lowercase=False),
    "google-service-account": NameBudget(max_length=30, invalid_characters=r"[^a-z0-9-]"),
    "google-role": NameBudget(
        max_length=64,
        invalid_characters=r"[^a-z0-9_]",
        separator=".",
        replacement="_",
    ),
    "google-pool": NameBudget(
        max_length=32,
        invalid_characters=r"[^a-z0-9-]",
        prefix="github",
        repository_length=0,
    ),
    "google-pool-provider": NameBudget(
        max_length=32,
        invalid_characters=r"[^a-z0-9-]",
        prefix="github-actions",
        repository_length=0,
    ),
    "scaleway-application": NameBudget(
        max_length=64,
        invalid_characters=r"[^a-zA-Z0-9._-]",
        repository_length=40,
        lowercase=False,
    ),
    "scaleway-policy": NameBudget(
        max_length=64,
        invalid_characters=r"[^a-zA-Z0-9._-]",
        repository_length=40,
        lowercase=False,
    ),
    "tailscale-description": NameBudget(
        max_length=50,
        invalid_characters=r"[^A-Za-z0-9 _-]",
        prefix="",
        repository_length=50,
        suffix_length=0,
        lowercase=False,
    ),
    "gitlab-token": NameBudget(
        max_length=255,
        invalid_characters=r"[^\w .-]",
        prefix="",
        repository_length=255,
        suffix_length=0,
        lowercase=False,
    ),
}


def budget(kind: str) -> NameBudget:
    try:
        return BUDGETS[kind]
    except KeyError as exc:
        raise KeyError(f"no name budget for {kind!r}") from exc
