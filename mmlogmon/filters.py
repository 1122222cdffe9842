"""FilterSet: compiled begin/end/exclude patterns shared by every watch."""

import re
import logging
from collections.abc import Iterable, Sequence

from mmlogmon.config import ConfigError, Settings

logger = logging.getLogger(__name__)


def _compile(pattern: str, option: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Error compiling {option} regex {pattern!r}: {e}") from e


class FilterSet:
    """Immutable after construction; safe to share across threads."""

    def __init__(
        self,
        begin: re.Pattern | None = None,
        end: re.Pattern | None = None,
        exclude: Sequence[re.Pattern] = (),
    ):
        self._begin = begin
        self._end = end
        self._exclude = tuple(exclude)

    @classmethod
    def compile(
        cls,
        begin: str | None = None,
        end: str | None = None,
        exclude: Iterable[str] = (),
    ) -> "FilterSet":
        """Compile raw pattern strings. Raises ConfigError on a bad regex."""
        return cls(
            begin=_compile(begin, "begin") if begin else None,
            end=_compile(end, "end") if end else None,
            exclude=[_compile(p, "exclude") for p in exclude],
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "FilterSet":
        filters = cls.compile(settings.begin, settings.end, settings.exclude)
        logger.debug(
            "Filters compiled: begin=%r end=%r exclude=%d pattern(s)",
            settings.begin, settings.end, len(settings.exclude),
        )
        return filters

    @property
    def has_begin(self) -> bool:
        return self._begin is not None

    def matches_begin(self, line: str) -> bool:
        return self._begin is not None and self._begin.search(line) is not None

    def matches_end(self, line: str) -> bool:
        return self._end is not None and self._end.search(line) is not None

    def is_excluded(self, lines: Iterable[str]) -> bool:
        """True if any exclude pattern matches any line of the entry."""
        if not self._exclude:
            return False
        return any(p.search(line) for line in lines for p in self._exclude)
