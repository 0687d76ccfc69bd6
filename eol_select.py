"""
File selection from include and exclude glob patterns.

Patterns are matched one path component at a time. Supported syntax:

    ?        any single character
    *        any run of characters within a component (dotfiles included)
    [abc]    one character from the set; ranges like [a-z]; [!abc] negates
    **       zero or more directories, only as a whole component

Every pattern is compiled before the filesystem is touched so that a bad
pattern never leaves a run half done.
"""

import logging
import os
import re
from typing import Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple

from eol_errors import PatternError, SelectionError

logger = logging.getLogger("eolconv.select")

_SEPARATORS = "/\\" if os.name == "nt" else "/"


class _Component(NamedTuple):
    literal: Optional[str]
    regex: Optional[re.Pattern]
    recursive: bool = False


_RECURSIVE = _Component(None, None, True)


def _split_components(text: str) -> Iterator[Tuple[str, int]]:
    """Yield (component, offset) pairs, skipping empty components."""
    start = 0
    for index, char in enumerate(text + _SEPARATORS[0]):
        if char in _SEPARATORS:
            if index > start:
                yield text[start:index], start
            start = index + 1


def _parse_class(
    pattern: str, component: str, start: int, offset: int
) -> Tuple[str, int]:
    """
    Translate the character class opening at component[start].
    Returns the regex fragment and the index just past the closing bracket.
    """
    i = start + 1
    negate = i < len(component) and component[i] == "!"
    if negate:
        i += 1

    items: List[str] = []
    first = True
    while i < len(component):
        char = component[i]
        # A ']' right after the opening bracket is a literal member
        if char == "]" and not first:
            prefix = "^" if negate else ""
            return "[" + prefix + "".join(items) + "]", i + 1
        first = False
        is_range = (
            i + 2 < len(component)
            and component[i + 1] == "-"
            and component[i + 2] != "]"
        )
        if is_range:
            low, high = char, component[i + 2]
            if low > high:
                raise PatternError(pattern, offset + i, f"invalid range '{low}-{high}'")
            items.append(re.escape(low) + "-" + re.escape(high))
            i += 3
        else:
            items.append(re.escape(char))
            i += 1

    raise PatternError(pattern, offset + start, "unclosed character class")


def _compile_component(
    pattern: str, component: str, offset: int, case_sensitive: bool
) -> _Component:
    if component == "**":
        return _RECURSIVE
    recursive_at = component.find("**")
    if recursive_at != -1:
        raise PatternError(
            pattern,
            offset + recursive_at,
            "recursive wildcards must form a single path component",
        )

    parts: List[str] = []
    magic = False
    i = 0
    while i < len(component):
        char = component[i]
        if char == "*":
            parts.append(".*")
            magic = True
            i += 1
        elif char == "?":
            parts.append(".")
            magic = True
            i += 1
        elif char == "[":
            fragment, i = _parse_class(pattern, component, i, offset)
            parts.append(fragment)
            magic = True
        else:
            parts.append(re.escape(char))
            i += 1

    flags = re.DOTALL if case_sensitive else re.DOTALL | re.IGNORECASE
    regex = re.compile("".join(parts), flags)
    return _Component(None if magic else component, regex)


class GlobPattern:
    """A compiled glob pattern that can be expanded against the filesystem."""

    def __init__(
        self,
        pattern: str,
        anchor: str,
        components: List[_Component],
        case_sensitive: bool,
    ) -> None:
        self.pattern = pattern
        self.anchor = anchor
        self.components = components
        self.case_sensitive = case_sensitive

    def __repr__(self) -> str:
        return f"GlobPattern({self.pattern!r}, case_sensitive={self.case_sensitive})"

    def expand(self) -> List[str]:
        """Return every existing path matching the pattern, sorted."""
        found: Set[str] = set()
        self._walk(self.anchor, 0, found)
        return sorted(found)

    def _walk(self, base: str, index: int, found: Set[str]) -> None:
        if index == len(self.components):
            if base and os.path.lexists(base):
                found.add(base)
            return

        component = self.components[index]
        last = index == len(self.components) - 1

        if component.recursive:
            if last:
                # Trailing '**' matches everything below the base
                found.update(path for path, _ in _iter_tree(base))
                return
            self._walk(base, index + 1, found)
            for path, is_dir in _iter_tree(base):
                if is_dir:
                    self._walk(path, index + 1, found)
            return

        literal = component.literal
        if literal is not None and (self.case_sensitive or literal in (".", "..")):
            self._walk(_join(base, literal), index + 1, found)
            return

        for name, is_dir in _scan(base):
            if not last and not is_dir:
                continue
            if component.regex is not None and component.regex.fullmatch(name):
                self._walk(_join(base, name), index + 1, found)


def _join(base: str, name: str) -> str:
    return os.path.join(base, name) if base else name


def _scan(base: str) -> List[Tuple[str, bool]]:
    """
    List (name, is_dir) for the entries of a directory, sorted by name.
    A missing directory is empty; any other read error stops the selection.
    """
    try:
        with os.scandir(base or os.curdir) as entries:
            listing = [(entry.name, entry.is_dir()) for entry in entries]
    except (FileNotFoundError, NotADirectoryError):
        return []
    except OSError as e:
        raise SelectionError(base or os.curdir, e) from e
    return sorted(listing)


def _iter_tree(base: str) -> Iterator[Tuple[str, bool]]:
    """Yield every entry below base, depth first, skipping symlinked directories."""
    for name, is_dir in _scan(base):
        path = _join(base, name)
        yield path, is_dir
        if is_dir and not os.path.islink(path):
            yield from _iter_tree(path)


def compile_pattern(pattern: str, case_sensitive: bool = False) -> GlobPattern:
    """Validate and compile a glob pattern, raising PatternError if it is malformed."""
    if not pattern:
        raise PatternError(pattern, 0, "empty pattern")

    drive, rest = os.path.splitdrive(pattern)
    anchor = drive
    if rest[:1] and rest[0] in _SEPARATORS:
        anchor = drive + os.sep
    offset = len(drive)

    components: List[_Component] = [
        _compile_component(pattern, text, offset + start, case_sensitive)
        for text, start in _split_components(rest)
    ]
    return GlobPattern(pattern, anchor, components, case_sensitive)


def _identity(path: str) -> str:
    return os.path.normcase(os.path.realpath(path))


def _regular_files(pattern: GlobPattern) -> List[str]:
    matches: List[str] = pattern.expand()
    files: List[str] = [path for path in matches if os.path.isfile(path)]
    if not matches:
        logger.info("Pattern '%s' matched nothing", pattern.pattern)
    elif not files:
        logger.info("Pattern '%s' matched no regular files", pattern.pattern)
    return files


def select_paths(
    includes: Iterable[str],
    excludes: Iterable[str] = (),
    case_sensitive: bool = False,
) -> Tuple[str, ...]:
    """
    Resolve include and exclude patterns into the ordered set of files to process.

    Files come out in include pattern order, sorted within each pattern, each
    file at most once. A file matched by any exclude pattern is dropped no
    matter which include patterns matched it.
    """
    include_patterns: List[GlobPattern] = [
        compile_pattern(pattern, case_sensitive) for pattern in includes
    ]
    exclude_patterns: List[GlobPattern] = [
        compile_pattern(pattern, case_sensitive) for pattern in excludes
    ]

    if not include_patterns:
        logger.warning("No included files.")
        return ()

    excluded: Set[str] = set()
    for pattern in exclude_patterns:
        excluded.update(_identity(path) for path in _regular_files(pattern))

    selected: List[str] = []
    seen: Set[str] = set()
    for pattern in include_patterns:
        for path in _regular_files(pattern):
            key = _identity(path)
            if key in excluded:
                logger.debug("Excluded: %s", path)
                continue
            if key in seen:
                continue
            seen.add(key)
            selected.append(path)

    logger.debug("Selected %d files", len(selected))
    return tuple(selected)
