"""
Glob patterns for watch and ignore lists.

Watch paths in the config are fswatch-style globs such as
"Broke/**/*.swift", "*.xcuserstate" or "DerivedData/**", and are always
relative to the project root.

Matching rules:
    - "*", "?" and "[...]" match within a single path segment.
    - "**" as a whole segment matches zero or more segments.
    - A pattern with no "/" matches the file name at any depth, so
      "*.xcuserstate" catches user state buried inside the .xcodeproj bundle.
    - A trailing "/" means "everything under this directory".

fnmatch does the per-segment work; this module adds the segment-aware
"**" handling fnmatch lacks and rejects patterns fnmatch would silently
accept as literals (an unterminated "[" class, for example).
"""

import fnmatch
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from trunk_swift.core.errors import ConfigError

# Characters that make a segment a wildcard rather than a literal name.
_MAGIC_CHARS = set("*?[")

_GLOBSTAR = "**"


def _has_magic(segment: str) -> bool:
    return any(ch in _MAGIC_CHARS for ch in segment)


def _has_unterminated_class(segment: str) -> bool:
    """Return True if a "[" character class in the segment is never closed."""
    i = 0
    n = len(segment)
    while i < n:
        if segment[i] != "[":
            i += 1
            continue
        j = i + 1
        if j < n and segment[j] in "!^":
            j += 1
        # A "]" right after the opening bracket is a literal member.
        if j < n and segment[j] == "]":
            j += 1
        while j < n and segment[j] != "]":
            j += 1
        if j >= n:
            return True
        i = j + 1
    return False


@dataclass(frozen=True)
class GlobPattern:
    """
    A compiled, validated glob pattern.

    segments holds one compiled regex per path segment, or None for a "**"
    segment. anchored is False for single-segment patterns, which are
    matched against the file name alone.
    """
    pattern: str
    segments: tuple
    anchored: bool
    literal_prefix: tuple[str, ...]

    def matches(self, rel_path: str) -> bool:
        """Check a project-relative POSIX path against this pattern."""
        parts = tuple(p for p in rel_path.split("/") if p and p != ".")
        if not parts:
            return False
        if not self.anchored:
            return bool(self.segments[0].match(parts[-1]))
        return _match_segments(self.segments, parts)

    @property
    def watch_root(self) -> PurePosixPath:
        """The deepest directory that contains every path this pattern can match."""
        return PurePosixPath(*self.literal_prefix) if self.literal_prefix else PurePosixPath(".")


def _match_segments(segments: tuple, parts: tuple[str, ...]) -> bool:
    if not segments:
        return not parts

    head = segments[0]
    if head is None:
        # "**" consumes any number of segments, including none.
        return any(
            _match_segments(segments[1:], parts[i:])
            for i in range(len(parts) + 1)
        )

    if not parts:
        return False
    return bool(head.match(parts[0])) and _match_segments(segments[1:], parts[1:])


def compile_glob(pattern: str) -> GlobPattern:
    """
    Validate and compile a single glob pattern.

    Raises:
        ConfigError: If the pattern is empty, escapes the project root,
                     has an unterminated "[" class, or uses "**" as part
                     of a larger segment (e.g. "src/a**").
    """
    if not isinstance(pattern, str) or not pattern.strip():
        raise ConfigError(f"Invalid glob pattern {pattern!r}: pattern is empty")

    text = pattern.strip()
    while text.startswith("./"):
        text = text[2:]
    text = text.lstrip("/")
    if text.endswith("/"):
        text = text + _GLOBSTAR

    raw_segments = [s for s in text.split("/") if s and s != "."]
    if not raw_segments:
        raise ConfigError(f"Invalid glob pattern {pattern!r}: pattern is empty")

    compiled = []
    for segment in raw_segments:
        if segment == "..":
            raise ConfigError(
                f"Invalid glob pattern {pattern!r}: '..' is not allowed, "
                "patterns are relative to the project root"
            )
        if segment == _GLOBSTAR:
            compiled.append(None)
            continue
        if _GLOBSTAR in segment:
            raise ConfigError(
                f"Invalid glob pattern {pattern!r}: '**' can only be an entire path segment"
            )
        if _has_unterminated_class(segment):
            raise ConfigError(
                f"Invalid glob pattern {pattern!r}: unterminated '[' character class"
            )
        compiled.append(re.compile(fnmatch.translate(segment)))

    anchored = len(raw_segments) > 1 or raw_segments[0] == _GLOBSTAR

    # Literal leading directories become the watch root. The final segment is
    # always a file (or file pattern), never part of the root.
    literal_prefix = []
    if anchored:
        for segment in raw_segments[:-1]:
            if segment == _GLOBSTAR or _has_magic(segment):
                break
            literal_prefix.append(segment)

    return GlobPattern(
        pattern=pattern,
        segments=tuple(compiled),
        anchored=anchored,
        literal_prefix=tuple(literal_prefix),
    )


class PathMatcher:
    """
    Include/ignore glob sets evaluated against project-relative paths.

    A path matches when at least one include pattern matches it and no
    ignore pattern does. Ignore always wins.
    """

    def __init__(self, include, ignore=()):
        self.include = [compile_glob(p) for p in sorted(include)]
        self.ignore = [compile_glob(p) for p in sorted(ignore)]
        if not self.include:
            raise ConfigError("No watch paths configured: at least one glob is required")

    def is_ignored(self, rel_path: str) -> bool:
        return any(g.matches(rel_path) for g in self.ignore)

    def matches(self, rel_path: str) -> bool:
        if self.is_ignored(rel_path):
            return False
        return any(g.matches(rel_path) for g in self.include)

    def relative_to_root(self, path: str | Path, root: Path) -> str | None:
        """
        Convert an absolute path to a POSIX path relative to root.

        Returns None for paths outside root, which never match.
        """
        try:
            return Path(path).resolve().relative_to(root.resolve()).as_posix()
        except ValueError:
            return None

    def watch_roots(self, root: Path) -> list[Path]:
        """
        Directories to subscribe to so that every include pattern is covered.

        A root that does not exist yet is replaced by its nearest existing
        ancestor inside the project; nested roots are collapsed into their
        parent so no directory is watched twice.
        """
        root = root.resolve()
        candidates = set()
        for glob in self.include:
            directory = root / glob.watch_root
            while directory != root and not directory.is_dir():
                directory = directory.parent
            candidates.add(directory)

        roots = []
        for directory in sorted(candidates, key=lambda p: len(p.parts)):
            if not any(directory == r or r in directory.parents for r in roots):
                roots.append(directory)
        return roots
