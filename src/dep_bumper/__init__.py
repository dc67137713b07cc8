"""Bump versioned import specifiers in JavaScript/TypeScript modules."""

from .dependency import (
    Dependency,
    DependencyUpdate,
    FileUpdateResult,
    ModuleUpdateResult,
    Position,
    Span,
)
from .graph import InvalidSpecifierError, init_graph_builder
from .patcher import (
    exec_dependency_update,
    exec_dependency_update_all,
    exec_dependency_update_grouped,
    write_file_update_results,
)
from .registry_clients import parse_props
from .reporting import create_pull_request_body
from .updater import collect_dependency_update_all, create_dependency_update

__version__ = "1.0.0"

__all__ = [
    "Dependency",
    "DependencyUpdate",
    "FileUpdateResult",
    "InvalidSpecifierError",
    "ModuleUpdateResult",
    "Position",
    "Span",
    "collect_dependency_update_all",
    "create_dependency_update",
    "create_pull_request_body",
    "exec_dependency_update",
    "exec_dependency_update_all",
    "exec_dependency_update_grouped",
    "init_graph_builder",
    "parse_props",
    "write_file_update_results",
]
