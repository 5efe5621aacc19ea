"""
TreeWatch Ignore Filter.

Decides which paths are never watched or reported.
Requires Python 3.11+.
"""

import os
import re
from collections.abc import Iterable

from utils.config import DEFAULT_IGNORE_PATTERNS


class IgnoreFilter:
    """
    Pure predicate over the final name component of a path.

    Patterns are regular expressions searched in the basename only, so an
    ignored name excludes the entry itself and, because traversal never
    descends into it, everything beneath it.
    """

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        source = DEFAULT_IGNORE_PATTERNS if patterns is None else patterns
        self._patterns: tuple[re.Pattern[str], ...] = tuple(re.compile(p) for p in source)

    @property
    def patterns(self) -> tuple[str, ...]:
        """Get the pattern sources."""
        return tuple(p.pattern for p in self._patterns)

    def should_ignore(self, path: str | os.PathLike[str]) -> bool:
        """Check whether a path's basename matches any ignore pattern."""
        name = os.path.basename(os.path.normpath(os.fspath(path)))
        return any(pattern.search(name) for pattern in self._patterns)

    __call__ = should_ignore
