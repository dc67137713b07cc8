"""
Source patcher.

Rewrites the specifier literal of a DependencyUpdate inside its referrer,
touching only the characters of the literal's span.
"""

import asyncio
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .dependency import DependencyUpdate, FileUpdateResult, ModuleUpdateResult
from .error_handling import log_filesystem_error, log_patch_warning
from .graph import file_url_to_path
from .structured_logging import get_patcher_logger


def _can_patch(update: DependencyUpdate, function: str) -> bool:
    if update.code is None or update.referrer is None:
        log_patch_warning(
            f"No source location for {update.specifier}",
            "patcher",
            function,
            specifier=update.specifier,
            referrer=update.referrer,
        )
        return False
    if not update.code.is_single_line:
        log_patch_warning(
            f"Multi-line specifier literals are not supported: {update.specifier}",
            "patcher",
            function,
            specifier=update.specifier,
            referrer=update.referrer,
        )
        return False
    return True


def _in_bounds(lines: List[str], update: DependencyUpdate, function: str) -> bool:
    code = update.code
    if code.start.line < len(lines) and code.end.character <= len(lines[code.start.line]):
        return True
    # The referrer changed after the update was collected
    log_patch_warning(
        f"Source location out of range for {update.specifier}",
        "patcher",
        function,
        specifier=update.specifier,
        referrer=update.referrer,
    )
    return False


def _replace_literal(lines: List[str], update: DependencyUpdate) -> None:
    """Rewrite the literal with double quotes, keeping the rest of the line."""
    code = update.code
    line = lines[code.start.line]
    lines[code.start.line] = (
        line[: code.start.character]
        + f'"{update.new_specifier}"'
        + line[code.end.character :]
    )


def _read_text(path) -> str:
    # newline="" keeps CRLF line endings intact
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def _write_text(path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


async def _read_referrer(referrer: str) -> str:
    return await asyncio.to_thread(_read_text, file_url_to_path(referrer))


async def exec_dependency_update(update: DependencyUpdate) -> Optional[ModuleUpdateResult]:
    """
    Compute the patched content of the update's referrer.

    The referrer is read at call time and not written back. Returns None when
    the update has no source location, spans several lines, or points past
    the end of the current file.

    Raises:
        OSError: If the referrer cannot be read
    """
    if not _can_patch(update, "exec_dependency_update"):
        return None

    content = await _read_referrer(update.referrer)
    lines = content.split("\n")
    if not _in_bounds(lines, update, "exec_dependency_update"):
        return None
    _replace_literal(lines, update)
    return ModuleUpdateResult(update=update, content="\n".join(lines))


async def exec_dependency_update_all(
    updates: Iterable[DependencyUpdate],
) -> List[ModuleUpdateResult]:
    """
    Patch every update independently and return the successes.

    Each update sees its referrer as read at call time, so two updates
    sharing a referrer produce two results that each carry only their own
    edit. Use exec_dependency_update_grouped to combine them.
    """
    updates = list(updates)
    results = await asyncio.gather(
        *(exec_dependency_update(update) for update in updates),
        return_exceptions=True,
    )

    patched = []
    for update, result in zip(updates, results):
        if isinstance(result, Exception):
            log_filesystem_error(
                f"Failed to patch {update.specifier}",
                "patcher",
                "exec_dependency_update_all",
                file_path=update.referrer,
                exception=result,
            )
        elif result is not None:
            patched.append(result)
    return patched


def _apply_grouped(
    referrer: str, content: str, updates: List[DependencyUpdate]
) -> FileUpdateResult:
    lines = content.split("\n")
    applied: List[DependencyUpdate] = []
    skipped: List[DependencyUpdate] = []

    # Right to left so earlier spans on the same line keep their offsets
    ordered = sorted(
        updates,
        key=lambda u: (u.code.start.line, u.code.start.character),
        reverse=True,
    )
    last_line, last_start = None, None
    for update in ordered:
        code = update.code
        if code.start.line == last_line and code.end.character > last_start:
            log_patch_warning(
                f"Overlapping update skipped: {update.specifier}",
                "patcher",
                "exec_dependency_update_grouped",
                specifier=update.specifier,
                referrer=referrer,
            )
            skipped.append(update)
            continue
        if not _in_bounds(lines, update, "exec_dependency_update_grouped"):
            skipped.append(update)
            continue
        _replace_literal(lines, update)
        applied.append(update)
        last_line, last_start = code.start.line, code.start.character

    applied.reverse()
    return FileUpdateResult(
        referrer=referrer, content="\n".join(lines), updates=applied, skipped=skipped
    )


async def exec_dependency_update_grouped(
    updates: Iterable[DependencyUpdate],
) -> List[FileUpdateResult]:
    """
    Apply all updates of each referrer to one buffer in a single pass.

    Updates that cannot be applied are reported and listed in `skipped` of
    their referrer's result. Updates without a referrer are reported only.
    Referrers that cannot be read are logged and left out.
    """
    logger = get_patcher_logger()
    by_referrer: Dict[str, List[DependencyUpdate]] = defaultdict(list)
    skipped: Dict[str, List[DependencyUpdate]] = defaultdict(list)

    for update in updates:
        if update.referrer is None:
            _can_patch(update, "exec_dependency_update_grouped")
            continue
        if _can_patch(update, "exec_dependency_update_grouped"):
            by_referrer[update.referrer].append(update)
        else:
            skipped[update.referrer].append(update)

    referrers = sorted(set(by_referrer) | set(skipped))
    contents = await asyncio.gather(
        *(_read_referrer(referrer) for referrer in referrers),
        return_exceptions=True,
    )

    results = []
    for referrer, content in zip(referrers, contents):
        if isinstance(content, Exception):
            log_filesystem_error(
                "Failed to read referrer",
                "patcher",
                "exec_dependency_update_grouped",
                file_path=referrer,
                exception=content,
            )
            continue
        result = _apply_grouped(referrer, content, by_referrer.get(referrer, []))
        results.append(
            FileUpdateResult(
                referrer=referrer,
                content=result.content,
                updates=result.updates,
                skipped=skipped.get(referrer, []) + result.skipped,
            )
        )

    logger.info(
        "grouped_patch_completed",
        file_count=len(results),
        update_count=sum(len(r.updates) for r in results),
    )
    return results


async def _write(referrer: str, content: str) -> None:
    await asyncio.to_thread(_write_text, file_url_to_path(referrer), content)


async def write_file_update_results(results: Iterable[FileUpdateResult]) -> int:
    """Write patched contents back to disk; returns the number of files written."""
    logger = get_patcher_logger()
    written = 0
    for result in results:
        if not result.updates:
            continue
        try:
            await _write(result.referrer, result.content)
        except OSError as e:
            log_filesystem_error(
                "Failed to write patched file",
                "patcher",
                "write_file_update_results",
                file_path=result.referrer,
                exception=e,
            )
            continue
        logger.info("file_written", referrer=result.referrer, update_count=len(result.updates))
        written += 1
    return written


async def write_module_update_results(results: Iterable[ModuleUpdateResult]) -> int:
    """
    Write single-update results back to disk.

    Later results for the same referrer overwrite earlier ones.
    """
    written = 0
    for result in results:
        try:
            await _write(result.referrer, result.content)
        except OSError as e:
            log_filesystem_error(
                "Failed to write patched file",
                "patcher",
                "write_module_update_results",
                file_path=result.referrer,
                exception=e,
            )
            continue
        written += 1
    return written
