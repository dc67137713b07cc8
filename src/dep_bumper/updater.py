"""
Core update engine.

Composes a DependencyUpdate for every graph edge whose specifier names a
versioned dependency with a newer release, and collects them over a whole
module graph with concurrent registry lookups.
"""

import asyncio
import contextlib
from pathlib import Path
from typing import Dict, List, Optional, Union

import httpx

from .cli_config import get_config
from .dependency import (
    DependencyUpdate,
    UpdatedDependency,
    VersionChange,
    create_url,
    semver_key,
)
from .graph import (
    DependencyEdge,
    GraphBuilder,
    LoadCallback,
    create_load_callback,
    default_load,
    init_graph_builder,
    path_to_file_url,
)
from .registry_clients import (
    BaseRegistryClient,
    RegistryKind,
    find_registry_client_class,
    get_registry_client,
)
from .structured_logging import (
    clear_run_context,
    get_updater_logger,
    log_update_found,
    set_run_context,
)

# Range operators kept in front of a bumped package version
_RANGE_OPERATORS = ("^", "~", ">=", "=")


def _split_range_operator(version: str):
    for operator in _RANGE_OPERATORS:
        if version.startswith(operator):
            return operator, version[len(operator):]
    return "", version


def _is_newer(latest: str, current: str) -> bool:
    """Whether `latest` has higher precedence than `current`."""
    latest_key = semver_key(latest)
    current_key = semver_key(current)
    if latest_key is None or current_key is None:
        return latest != current
    return latest_key > current_key


class DependencyUpdater:
    """
    Collects dependency updates for a module graph.

    Registry clients are opened once per collection and shared by every
    edge; lookups run concurrently, bounded by `max_concurrent`.
    """

    def __init__(
        self,
        rate_limit_rps: float = 10.0,
        max_concurrent: int = 20,
        timeout: float = 30.0,
        graph_builder: Optional[GraphBuilder] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the updater.

        Args:
            rate_limit_rps: Registry requests per second limit per registry
            max_concurrent: Maximum concurrent registry lookups
            timeout: HTTP timeout for registry lookups, in seconds
            graph_builder: Graph builder handle (defaults to the shared one)
            transport: Optional httpx transport for the registry clients
        """
        self.rate_limit_rps = rate_limit_rps
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self.graph_builder = graph_builder or init_graph_builder()
        self.transport = transport
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._clients: Dict[RegistryKind, BaseRegistryClient] = {}
        self._exit_stack: Optional[contextlib.AsyncExitStack] = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        """Lazy-load semaphore to avoid event loop issues."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    async def __aenter__(self):
        self._exit_stack = contextlib.AsyncExitStack()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._exit_stack:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._clients = {}

    async def _get_client(self, kind: RegistryKind) -> BaseRegistryClient:
        client = self._clients.get(kind)
        if client is None:
            if self._exit_stack is None:
                raise RuntimeError("DependencyUpdater must be used as an async context manager")
            client = get_registry_client(
                kind, self.rate_limit_rps, self.timeout, transport=self.transport
            )
            client = await self._exit_stack.enter_async_context(client)
            self._clients[kind] = client
        return client

    async def create_dependency_update(
        self, edge: DependencyEdge, referrer: Optional[str] = None
    ) -> Optional[DependencyUpdate]:
        """
        Compose the update for one edge, if there is one.

        Returns None when the specifier is not versioned, the latest version
        cannot be resolved, or the specifier is already up to date.
        """
        client_class = find_registry_client_class(edge.specifier)
        if client_class is None:
            return None

        props = parse_edge_props(edge, client_class)
        if props is None:
            return None

        async with self.semaphore:
            client = await self._get_client(client_class.kind)
            latest = await client.get_latest_version(props.name)

        if latest is None:
            return None

        operator, current = _split_range_operator(props.version)
        if latest == current or not _is_newer(latest, current):
            return None

        update = DependencyUpdate(
            specifier=edge.specifier,
            dependency=UpdatedDependency(name=props.name, path=props.path),
            version=VersionChange(from_=props.version, to=operator + latest),
            referrer=referrer,
            code=edge.code,
        )
        log_update_found(update.name, update.version.from_, update.version.to, referrer)
        return update

    async def collect_dependency_update_all(
        self,
        root_module: Union[str, Path],
        load_remote: bool = False,
        load: Optional[LoadCallback] = None,
    ) -> List[DependencyUpdate]:
        """
        Collect updates for every edge in the graph rooted at `root_module`.

        Results are in completion order. A failure on one edge drops only
        that edge's update.

        Args:
            root_module: Path (or URL) of the entry module
            load_remote: Walk into http(s) modules instead of treating them as leaves
            load: Loader used for modules the policy does not mark external

        Raises:
            InvalidSpecifierError: If the root module is not a valid specifier
        """
        logger = get_updater_logger()
        root_specifier = _to_specifier(root_module)
        set_run_context(root_specifier, load_remote)

        try:
            graph = await self.graph_builder.build_graph(
                root_specifier,
                load=create_load_callback(load_remote, load or default_load),
            )

            updates: List[DependencyUpdate] = []

            async def compose(edge: DependencyEdge, referrer: str) -> None:
                try:
                    update = await self.create_dependency_update(edge, referrer)
                except Exception as e:
                    logger.warning(
                        "dependency_update_failed",
                        specifier=edge.specifier,
                        referrer=referrer,
                        error=str(e),
                    )
                    return
                if update is not None:
                    updates.append(update)

            tasks = [
                compose(edge, module.specifier)
                for module in graph.modules
                for edge in module.dependencies or []
            ]
            await asyncio.gather(*tasks)

            logger.info(
                "collection_completed",
                module_count=len(graph.modules),
                edge_count=len(tasks),
                update_count=len(updates),
            )
            return updates
        finally:
            clear_run_context()


def parse_edge_props(edge: DependencyEdge, client_class=None):
    """Parse an edge's specifier with the matching registry's rule."""
    url = create_url(edge.specifier)
    if url is None:
        return None
    if client_class is None:
        client_class = find_registry_client_class(edge.specifier)
        if client_class is None:
            return None
    return client_class.parse_props(url)


def _to_specifier(root_module: Union[str, Path]) -> str:
    if isinstance(root_module, str) and "://" in root_module:
        return root_module
    return path_to_file_url(root_module)


def get_dependency_updater(
    rate_limit_rps: Optional[float] = None,
    max_concurrent: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DependencyUpdater:
    """
    Factory function to create a dependency updater.

    Args:
        rate_limit_rps: Registry requests per second (defaults to config value)
        max_concurrent: Maximum concurrent lookups (defaults to config value)
        transport: Optional httpx transport for the registry clients

    Returns:
        Configured DependencyUpdater instance
    """
    config = get_config()
    return DependencyUpdater(
        rate_limit_rps or config.update.rate_limit,
        max_concurrent or config.update.max_concurrent,
        config.update.timeout_seconds,
        transport=transport,
    )


async def create_dependency_update(
    edge: Union[DependencyEdge, str], referrer: Optional[str] = None
) -> Optional[DependencyUpdate]:
    """Compose the update for a single edge or bare specifier."""
    if isinstance(edge, str):
        edge = DependencyEdge(specifier=edge)
    async with get_dependency_updater() as updater:
        return await updater.create_dependency_update(edge, referrer)


async def collect_dependency_update_all(
    root_module: Union[str, Path], load_remote: Optional[bool] = None
) -> List[DependencyUpdate]:
    """Collect every available update in the graph rooted at `root_module`."""
    if load_remote is None:
        load_remote = get_config().update.load_remote
    async with get_dependency_updater() as updater:
        return await updater.collect_dependency_update_all(root_module, load_remote)
