"""
Filters - Include/exclude rules for object keys.

Patterns are simple globs: '*' matches any run of characters (including
'/'), '?' matches exactly one character. Everything else is literal.
"""

import re
from functools import lru_cache
from typing import Iterable, Optional


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern:
    """Translate a glob pattern into an anchored regular expression."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def matches_any(key: str, patterns: Iterable[str]) -> bool:
    """True if the key matches at least one pattern."""
    return any(glob_to_regex(p).match(key) for p in patterns)


def is_indexable(
    key: str,
    includes: Optional[Iterable[str]] = None,
    excludes: Optional[Iterable[str]] = None,
) -> bool:
    """
    Decide whether an object key should be indexed.

    Rules, in order:
        1. No includes and no excludes: index everything
        2. Any exclude matches: reject, even if an include matches
        3. No includes: accept
        4. Accept only if an include matches
    """
    includes = list(includes or ())
    excludes = list(excludes or ())

    if not includes and not excludes:
        return True

    if matches_any(key, excludes):
        return False

    if not includes:
        return True

    return matches_any(key, includes)
