"""
Module graph builder for JavaScript/TypeScript sources.

Walks static imports breadth-first from a root module and records, for every
module, the import specifiers it contains together with the exact source
span of each specifier literal. Which specifiers are walked and which stay
opaque leaves is decided by a load callback supplied by the caller.
"""

import asyncio
import functools
import re
from collections import deque
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Pattern, Tuple, Union
from urllib.parse import unquote, urljoin, urlsplit

import httpx

from .cli_config import get_config
from .dependency import Position, Span, create_url
from .error_handling import ErrorCategory, get_error_handler
from .structured_logging import get_graph_logger

# import x from "mod"; import { a } from "mod"; import type { T } from "mod"
_STATIC_IMPORT_PATTERN = r"""^[ \t]*import\b[^'";]*?\bfrom\s*(?P<literal>(?P<quote>['"])(?P<specifier>[^'"\r\n]*)(?P=quote))"""
# export { a } from "mod"; export * from "mod"
_REEXPORT_PATTERN = r"""^[ \t]*export\b[^'";]*?\bfrom\s*(?P<literal>(?P<quote>['"])(?P<specifier>[^'"\r\n]*)(?P=quote))"""
# import "mod";
_SIDE_EFFECT_IMPORT_PATTERN = r"""^[ \t]*import\s*(?P<literal>(?P<quote>['"])(?P<specifier>[^'"\r\n]*)(?P=quote))"""
# import("mod")
_DYNAMIC_IMPORT_PATTERN = r"""\bimport\s*\(\s*(?P<literal>(?P<quote>['"])(?P<specifier>[^'"\r\n]*)(?P=quote))\s*\)"""


class InvalidSpecifierError(ValueError):
    """A specifier reached the load policy that is not a valid URL."""


@dataclass(frozen=True)
class DependencyEdge:
    """An import of `specifier` from the referring module."""

    specifier: str
    code: Optional[Span] = None
    error: Optional[str] = None


@dataclass
class Module:
    """A module in the graph; external modules have no dependencies."""

    specifier: str
    dependencies: Optional[List[DependencyEdge]] = None
    kind: str = "source"
    error: Optional[str] = None


@dataclass
class ModuleGraph:
    """Modules reachable from `root`, in the order they were loaded."""

    root: str
    modules: List[Module] = field(default_factory=list)

    def get_module(self, specifier: str) -> Optional[Module]:
        return next((m for m in self.modules if m.specifier == specifier), None)


@dataclass(frozen=True)
class ExternalModule:
    """Load result for a module that must not be walked into."""

    specifier: str


@dataclass(frozen=True)
class ModuleSource:
    """Load result carrying a module's source text."""

    specifier: str
    content: str


LoadResult = Optional[Union[ExternalModule, ModuleSource]]
LoadCallback = Callable[[str], Awaitable[LoadResult]]


def file_url_to_path(specifier: str) -> Path:
    """Convert a `file:` URL to a local path."""
    url = urlsplit(specifier)
    if url.scheme != "file":
        raise ValueError(f"Not a file URL: {specifier}")
    return Path(unquote(url.path))


def path_to_file_url(path: Union[str, Path]) -> str:
    return Path(path).resolve().as_uri()


def offset_to_position(content: str, offset: int) -> Position:
    """Translate a character offset into a zero-based line/character pair."""
    line = content.count("\n", 0, offset)
    line_start = content.rfind("\n", 0, offset) + 1
    return Position(line=line, character=offset - line_start)


def resolve_specifier(specifier: str, referrer: str) -> Optional[str]:
    """
    Resolve an import specifier against the URL of the importing module.

    Returns None for bare names such as `react`, which have no meaning
    without an import map.
    """
    if create_url(specifier) is not None:
        return specifier
    if specifier.startswith(("./", "../", "/")):
        return urljoin(referrer, specifier)
    return None


async def default_load(specifier: str) -> LoadResult:
    """
    Load a module's source text.

    `file:` URLs are read from disk and `http(s):` URLs are fetched. Returns
    None when the module does not exist.
    """
    url = create_url(specifier)
    if url is None:
        return None

    if url.scheme == "file":
        path = file_url_to_path(specifier)
        if not path.is_file():
            return None
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return ModuleSource(specifier=specifier, content=content)

    if url.scheme in ("http", "https"):
        config = get_config()
        timeout = httpx.Timeout(
            config.network.read_timeout, connect=config.network.connect_timeout
        )
        async with httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": config.network.user_agent},
            follow_redirects=True,
        ) as client:
            response = await client.get(specifier)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return ModuleSource(specifier=str(response.url), content=response.text)

    return ExternalModule(specifier=specifier)


def create_load_callback(
    load_remote: bool = False, fallback: LoadCallback = default_load
) -> LoadCallback:
    """
    Build the load policy handed to the graph builder.

    `npm:` and `node:` modules are always external. `http(s):` modules are
    external unless `load_remote` is set, in which case `fallback` fetches
    them like any other module.
    """

    async def load(specifier: str) -> LoadResult:
        url = create_url(specifier)
        if url is None:
            raise InvalidSpecifierError(f"Invalid specifier: {specifier}")
        if url.scheme in ("node", "npm"):
            return ExternalModule(specifier=specifier)
        if url.scheme in ("http", "https"):
            if load_remote:
                return await fallback(specifier)
            return ExternalModule(specifier=specifier)
        return await fallback(specifier)

    return load


class GraphBuilder:
    """
    Builds module graphs by scanning import statements.

    Obtain one through `init_graph_builder()`; the compiled scanners are
    shared by every graph built from the same handle.
    """

    def __init__(self, patterns: Tuple[Pattern[str], ...]):
        self.patterns = patterns

    def scan_dependencies(self, content: str) -> List[DependencyEdge]:
        """
        Find every import specifier literal in a module's source.

        Each distinct specifier becomes one edge carrying the span of its
        first occurrence, quotes included.
        """
        found: Dict[str, Tuple[int, int]] = {}
        for pattern in self.patterns:
            for match in pattern.finditer(content):
                specifier = match.group("specifier")
                start, end = match.span("literal")
                previous = found.get(specifier)
                if previous is None or start < previous[0]:
                    found[specifier] = (start, end)

        edges = []
        for specifier, (start, end) in sorted(found.items(), key=lambda item: item[1][0]):
            edges.append(
                DependencyEdge(
                    specifier=specifier,
                    code=Span(
                        start=offset_to_position(content, start),
                        end=offset_to_position(content, end),
                    ),
                )
            )
        return edges

    async def build_graph(self, root_specifier: str, load: LoadCallback) -> ModuleGraph:
        """
        Walk the module graph from `root_specifier`.

        Every module is loaded once through `load`. Modules that fail to load
        are kept in the graph with an error and not walked further. Imports
        that cannot be resolved keep an error on their edge and are never
        handed to `load`.

        Raises:
            InvalidSpecifierError: If `load` rejects a resolved specifier
        """
        logger = get_graph_logger()
        graph = ModuleGraph(root=root_specifier)
        queue = deque([root_specifier])
        seen = {root_specifier}

        while queue:
            specifier = queue.popleft()
            module = await self._load_module(specifier, load)
            graph.modules.append(module)

            for index, edge in enumerate(module.dependencies or []):
                resolved = resolve_specifier(edge.specifier, module.specifier)
                if resolved is None:
                    module.dependencies[index] = replace(
                        edge, error=f"Unable to resolve specifier: {edge.specifier}"
                    )
                    logger.debug(
                        "specifier_unresolved",
                        specifier=edge.specifier,
                        referrer=module.specifier,
                    )
                elif resolved not in seen:
                    seen.add(resolved)
                    queue.append(resolved)

        logger.info(
            "graph_built",
            root=root_specifier,
            module_count=len(graph.modules),
            edge_count=sum(len(m.dependencies or []) for m in graph.modules),
        )
        return graph

    async def _load_module(self, specifier: str, load: LoadCallback) -> Module:
        try:
            result = await load(specifier)
        except InvalidSpecifierError:
            raise
        except (OSError, UnicodeDecodeError, httpx.HTTPError) as e:
            get_error_handler().warning(
                ErrorCategory.GRAPH,
                f"Failed to load module {specifier}",
                "graph",
                "_load_module",
                exception=e,
            )
            return Module(specifier=specifier, error=str(e))

        if result is None:
            return Module(specifier=specifier, error="Module not found")
        if isinstance(result, ExternalModule):
            return Module(specifier=result.specifier, kind="external")
        return Module(
            specifier=result.specifier,
            dependencies=self.scan_dependencies(result.content),
        )


@functools.lru_cache(maxsize=None)
def init_graph_builder() -> GraphBuilder:
    """One-time setup of the graph builder; every call returns the same handle."""
    patterns = tuple(
        re.compile(pattern, re.MULTILINE)
        for pattern in (
            _STATIC_IMPORT_PATTERN,
            _REEXPORT_PATTERN,
            _SIDE_EFFECT_IMPORT_PATTERN,
            _DYNAMIC_IMPORT_PATTERN,
        )
    )
    return GraphBuilder(patterns)
