"""Helpers for public quiz slugs and the links built from them."""

from __future__ import annotations

import secrets

__all__ = [
    "SLUG_ALPHABET",
    "SLUG_LENGTH",
    "build_public_url",
    "new_public_slug",
]


# URL-safe alphabet (64 symbols): 8 characters give 48 bits of entropy.
SLUG_ALPHABET = "useandom-26T198340PX75pxJACKVERYMINDBUSHWOLF_GQZbfghjklqvwyzrict"
SLUG_LENGTH = 8


def new_public_slug(length: int = SLUG_LENGTH) -> str:
    """Return a random, URL-safe token of *length* characters."""

    if length <= 0:
        raise ValueError("Slug length must be positive")
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def build_public_url(base_url: str, slug: str) -> str:
    """Return ``<base_url>/q/<slug>`` without doubling slashes."""

    return f"{base_url.rstrip('/')}/q/{slug}"
