"""
Filename filters and the accept-once dedup filter.

A FilterChain is an ordered list of predicates, all of which must accept an
entry. The dedup filter always runs last and records the entry as seen when
it accepts it.
"""

from __future__ import annotations

import fnmatch
import re
from typing import Protocol

from sftpsource.exceptions import FilterConfigError
from sftpsource.source.seen_store import SeenFileStore
from sftpsource.source.types import RemoteEntry, entry_key
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.filters")


class Predicate(Protocol):
    """Filter protocol: decide whether a remote entry may be dispatched."""

    def accept(self, entry: RemoteEntry) -> bool: ...


class SimplePatternFilter:
    """Glob match (``*``, ``?``, ``[...]``) against the entry name only."""

    def __init__(self, pattern: str):
        self.pattern = pattern

    def accept(self, entry: RemoteEntry) -> bool:
        # fnmatchcase: matching must not depend on the local OS' case rules
        return fnmatch.fnmatchcase(entry.name, self.pattern)

    def __repr__(self) -> str:
        return f"SimplePatternFilter('{self.pattern}')"


class RegexPatternFilter:
    """Full-match regular expression against the entry name only."""

    def __init__(self, regex: str | re.Pattern[str]):
        try:
            self.regex = re.compile(regex) if isinstance(regex, str) else regex
        except re.error as e:
            raise FilterConfigError(f"Invalid filename_regex '{regex}': {e}", details={"filename_regex": regex}) from e

    def accept(self, entry: RemoteEntry) -> bool:
        return self.regex.fullmatch(entry.name) is not None

    def __repr__(self) -> str:
        return f"RegexPatternFilter('{self.regex.pattern}')"


class AcceptOnceFilter:
    """
    Persistent accept-once filter.

    ``accept`` has a side effect: an accepted entry's key is written to the
    store before True is returned, so the same key is rejected by every later
    call, including after a restart.
    """

    def __init__(self, store: SeenFileStore, separator: str = "/"):
        self.store = store
        self.separator = separator

    def accept(self, entry: RemoteEntry) -> bool:
        key = entry_key(entry.full_path, self.separator)
        accepted = self.store.mark_if_absent(key)
        if not accepted:
            logger.debug(f"Already seen: {key}")
        return accepted

    def __repr__(self) -> str:
        return f"AcceptOnceFilter(namespace='{self.store.namespace}')"


class FilterChain:
    """Logical AND over predicates, evaluated in order, stopping at the first rejection."""

    def __init__(self, filters: list[Predicate] | None = None):
        self.filters: list[Predicate] = list(filters or [])

    def add_filter(self, predicate: Predicate) -> FilterChain:
        self.filters.append(predicate)
        return self

    def accept(self, entry: RemoteEntry) -> bool:
        for predicate in self.filters:
            if not predicate.accept(entry):
                return False
        return True

    def __len__(self) -> int:
        return len(self.filters)

    def __repr__(self) -> str:
        return f"FilterChain({self.filters!r})"


def build_filter_chain(
    store: SeenFileStore,
    *,
    filename_pattern: str | None = None,
    filename_regex: str | None = None,
    separator: str = "/",
) -> FilterChain:
    """
    Build the standard chain: optional name filter, then the dedup filter.

    Raises:
        FilterConfigError: if both a pattern and a regex are given, or the
            regex does not compile.
    """
    has_pattern = filename_pattern is not None and bool(filename_pattern.strip())
    if has_pattern and filename_regex is not None:
        raise FilterConfigError(
            "filename_pattern and filename_regex are mutually exclusive",
            details={"filename_pattern": filename_pattern, "filename_regex": filename_regex},
        )

    chain = FilterChain()
    if has_pattern:
        chain.add_filter(SimplePatternFilter(filename_pattern))
    elif filename_regex is not None:
        chain.add_filter(RegexPatternFilter(filename_regex))
    chain.add_filter(AcceptOnceFilter(store, separator=separator))
    return chain
