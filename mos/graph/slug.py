"""URL-safe slugs for node identity."""

import hashlib
import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

HASHED_SLUG_PREFIX = "n-"
HASHED_SLUG_LENGTH = 12


def slugify(text: str) -> str:
    """Lowercase, collapse every run of non-alphanumerics to "-", trim hyphens.

    >>> slugify("Cache (Redis)")
    'cache-redis'
    """
    return _NON_ALNUM.sub("-", text.lower()).strip("-")


def node_slug(text: str) -> str:
    """Slug for a node title that is never empty.

    Titles with no ASCII letters or digits ("Кэш", "???") slugify to "",
    so they get a stable slug derived from the SHA-256 of the stripped title.
    """
    slug = slugify(text)
    if slug:
        return slug
    digest = hashlib.sha256(text.strip().encode("utf-8")).hexdigest()
    return f"{HASHED_SLUG_PREFIX}{digest[:HASHED_SLUG_LENGTH]}"
