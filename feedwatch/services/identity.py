"""Post identity and deduplication.

Two keying schemes, never mixed:

- ``t-``: author + precise machine timestamp, used whenever the feed item carried
  an absolute ``datetime``. Edits to the text do not change the identity.
- ``c-``: author + content hash, used when the time was only relative or missing,
  since a relative label resolves to a different instant on every read.

Both hash the UTF-8 encoding, so any Unicode content is safe.
"""

import hashlib
from collections.abc import Iterable

from feedwatch.schemas.post import Post

IDENTITY_LENGTH = 24

_FIELD_SEPARATOR = "\x1f"


def _digest(*parts: str) -> str:
    joined = _FIELD_SEPARATOR.join(parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:IDENTITY_LENGTH]


def compute_identity(
    author: str, content: str, sortable_instant: str, *, precise: bool = True
) -> str:
    """Return a stable id for a post.

    ``precise`` says whether ``sortable_instant`` came from an unambiguous
    machine timestamp.
    """
    if precise:
        return f"t-{_digest(author, sortable_instant)}"
    return f"c-{_digest(author, content)}"


def filter_novel(candidates: Iterable[Post], known_ids: Iterable[str]) -> list[Post]:
    """Keep candidates whose id is unknown, first occurrence only, in input order."""
    seen = set(known_ids)
    novel: list[Post] = []
    for post in candidates:
        if post.id in seen:
            continue
        seen.add(post.id)
        novel.append(post)
    return novel
