"""
Data structures shared by the update engine.

Parsed dependencies, source spans, update records and patch results. All
records are frozen: an update is created once per graph edge and never
mutated afterwards.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import SplitResult, urlsplit

# Semantic version with an optional leading tag letter (e.g. "v1.2.3")
SEMVER_PATTERN = re.compile(
    r"[a-zA-Z]?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
)

URL_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


def semver_key(version: str) -> Optional[Tuple[Any, ...]]:
    """
    Sort key implementing semantic-version precedence.

    A pre-release sorts below its release; pre-release identifiers compare
    numerically when numeric and lexically otherwise, numeric first. Build
    metadata is ignored. Returns None for strings that are not semver.
    """
    match = SEMVER_PATTERN.fullmatch(version)
    if match is None:
        return None

    core = (int(match.group("major")), int(match.group("minor")), int(match.group("patch")))
    prerelease = match.group("prerelease")
    if prerelease is None:
        return core + (1, ())

    identifiers = tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in prerelease.split(".")
    )
    return core + (0, identifiers)


def is_prerelease(version: str) -> bool:
    match = SEMVER_PATTERN.fullmatch(version)
    return bool(match and match.group("prerelease"))


def create_url(specifier: str) -> Optional[SplitResult]:
    """
    Parse a specifier as an absolute URL.

    Returns None for relative paths, bare names and anything without a
    scheme, mirroring what a URL constructor would reject.
    """
    if not specifier or not isinstance(specifier, str):
        return None
    if not URL_SCHEME_PATTERN.match(specifier):
        return None
    try:
        url = urlsplit(specifier)
    except ValueError:
        return None
    if url.scheme in ("http", "https") and not url.netloc:
        return None
    return url


@dataclass(frozen=True)
class Dependency:
    """A versioned module reference parsed out of a specifier."""

    name: str
    version: str
    path: str


@dataclass(frozen=True)
class Position:
    """Zero-based line/character position in a source file."""

    line: int
    character: int


@dataclass(frozen=True)
class Span:
    """Half-open range of source text occupied by a specifier literal."""

    start: Position
    end: Position

    @property
    def is_single_line(self) -> bool:
        return self.start.line == self.end.line

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "start": {"line": self.start.line, "character": self.start.character},
            "end": {"line": self.end.line, "character": self.end.character},
        }


@dataclass(frozen=True)
class UpdatedDependency:
    """Name and sub-path of the dependency an update refers to."""

    name: str
    path: str


@dataclass(frozen=True)
class VersionChange:
    """A version bump; `from_` is the token as written in the specifier."""

    from_: str
    to: str


@dataclass(frozen=True)
class DependencyUpdate:
    """A computed version bump for one import specifier in one referrer."""

    specifier: str
    dependency: UpdatedDependency
    version: VersionChange
    referrer: Optional[str] = None
    code: Optional[Span] = None

    @property
    def name(self) -> str:
        return self.dependency.name

    @property
    def new_specifier(self) -> str:
        """The specifier with the first occurrence of the old version replaced."""
        return self.specifier.replace(self.version.from_, self.version.to, 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "specifier": self.specifier,
            "newSpecifier": self.new_specifier,
            "referrer": self.referrer,
            "dependency": {"name": self.dependency.name, "path": self.dependency.path},
            "version": {"from": self.version.from_, "to": self.version.to},
            "code": self.code.to_dict() if self.code else None,
        }


@dataclass(frozen=True)
class ModuleUpdateResult:
    """An update together with the full patched text of its referrer."""

    update: DependencyUpdate
    content: str

    @property
    def referrer(self) -> Optional[str]:
        return self.update.referrer


@dataclass(frozen=True)
class FileUpdateResult:
    """All updates applied to one referrer in a single pass."""

    referrer: str
    content: str
    updates: List[DependencyUpdate]
    skipped: List[DependencyUpdate]
