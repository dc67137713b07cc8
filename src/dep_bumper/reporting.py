"""
Reporting and output formatting for dependency updates.

Provides console tables using the Rich library, a JSON export and a Markdown
summary suitable for a pull request body.
"""

import json
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .dependency import DependencyUpdate, FileUpdateResult


def group_updates_by_name(
    updates: Iterable[DependencyUpdate],
) -> Dict[str, List[DependencyUpdate]]:
    """Group updates by dependency name, sorted by name."""
    grouped: Dict[str, List[DependencyUpdate]] = defaultdict(list)
    for update in updates:
        grouped[update.name].append(update)
    return {
        name: sorted(grouped[name], key=lambda u: (u.referrer or "", u.specifier))
        for name in sorted(grouped)
    }


def updates_to_json(updates: Iterable[DependencyUpdate], root_module: Optional[str] = None) -> str:
    """Serialize updates to JSON, ordered by dependency name and referrer."""
    grouped = group_updates_by_name(updates)
    ordered = [update for group in grouped.values() for update in group]
    results = {
        "root_module": root_module,
        "total_updates": len(ordered),
        "dependencies": sorted(grouped),
        "updates": [update.to_dict() for update in ordered],
    }
    return json.dumps(results, indent=2, ensure_ascii=False)


def create_pull_request_body(updates: Iterable[DependencyUpdate]) -> str:
    """
    Markdown summary of updates, one bullet per dependency.

    A dependency bumped from several versions lists each of them.
    """
    lines = ["Bumped version(s) for the following dependencies:", ""]
    for name, group in group_updates_by_name(updates).items():
        from_versions = sorted({u.version.from_ for u in group})
        to_version = group[0].version.to
        lines.append(f"- {name} {', '.join(from_versions)} -> {to_version}")
    return "\n".join(lines) + "\n"


class UpdateReporter:
    """Formats and displays collected dependency updates."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_updates(self, updates: List[DependencyUpdate], root_module: str) -> None:
        """Print updates grouped by dependency name."""
        self.console.print()
        self.console.print(
            Panel(
                f"🔍 Dependency updates for {root_module}",
                title="[bold blue]dep-bumper[/bold blue]",
                border_style="blue",
            )
        )

        if not updates:
            self.console.print("✅ All dependencies are up to date.", style="green")
            return

        table = Table(title="📦 Available Updates", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Dependency", style="bold")
        table.add_column("From")
        table.add_column("To", style="green")
        table.add_column("Referrer", style="dim")

        for name, group in group_updates_by_name(updates).items():
            for index, update in enumerate(group):
                table.add_row(
                    name if index == 0 else "",
                    update.version.from_,
                    update.version.to,
                    _short_referrer(update.referrer),
                )

        self.console.print(table)
        self.console.print(
            f"\n{len(updates)} update(s) across "
            f"{len(group_updates_by_name(updates))} dependencies",
            style="bold",
        )

    def print_patch_results(self, results: List[FileUpdateResult], dry_run: bool) -> None:
        """Print a per-file summary of applied and skipped updates."""
        verb = "Would update" if dry_run else "Updated"
        for result in results:
            if result.updates:
                self.console.print(
                    f"✅ {verb} {_short_referrer(result.referrer)} "
                    f"({len(result.updates)} specifier(s))",
                    style="green",
                )
            for update in result.skipped:
                self.console.print(
                    f"⚠️  Skipped {update.specifier} in {_short_referrer(result.referrer)}",
                    style="yellow",
                )


def _short_referrer(referrer: Optional[str]) -> str:
    if not referrer:
        return "-"
    return referrer.rsplit("/", 1)[-1]
