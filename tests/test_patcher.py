"""
Source patching tests for dep-bumper.
Tests exact single-span edits, skipped updates and multi-update files.
"""

import pytest

from dep_bumper.dependency import (
    DependencyUpdate,
    Position,
    Span,
    UpdatedDependency,
    VersionChange,
)
from dep_bumper.error_handling import get_error_handler
from dep_bumper.graph import init_graph_builder
from dep_bumper.patcher import (
    exec_dependency_update,
    exec_dependency_update_all,
    exec_dependency_update_grouped,
    write_file_update_results,
    write_module_update_results,
)

MODULE = """\
import { assert } from "https://deno.land/std@0.1.0/assert/mod.ts";
import { Hono } from 'https://deno.land/x/hono@v0.1.0/mod.ts';
import express from "npm:express@^4.17.0";

console.log(assert, Hono, express);
"""


def make_update(path, specifier, from_, to, code=None, name="dep"):
    """Build an update for `specifier`, locating its span in the file when not given."""
    if code is None:
        edges = init_graph_builder().scan_dependencies(path.read_text(encoding="utf-8"))
        code = next(edge.code for edge in edges if edge.specifier == specifier)
    return DependencyUpdate(
        specifier=specifier,
        dependency=UpdatedDependency(name=name, path=""),
        version=VersionChange(from_=from_, to=to),
        referrer=path.resolve().as_uri(),
        code=code,
    )


def without_location(update):
    return DependencyUpdate(
        specifier=update.specifier,
        dependency=update.dependency,
        version=update.version,
        referrer=update.referrer,
    )


@pytest.fixture
def module_file(temp_dir):
    path = temp_dir / "mod.ts"
    path.write_text(MODULE, encoding="utf-8")
    return path


class TestSingleUpdate:
    """Test patching one update at a time."""

    @pytest.mark.asyncio
    async def test_only_the_span_changes(self, module_file):
        specifier = "https://deno.land/std@0.1.0/assert/mod.ts"
        update = make_update(module_file, specifier, "0.1.0", "0.2.0")

        result = await exec_dependency_update(update)

        original_lines = MODULE.split("\n")
        patched_lines = result.content.split("\n")
        start, end = update.code.start.character, update.code.end.character
        line = update.code.start.line

        assert len(patched_lines) == len(original_lines)
        for index, (before, after) in enumerate(zip(original_lines, patched_lines)):
            if index != line:
                assert before == after
        target = patched_lines[line]
        assert target[:start] == original_lines[line][:start]
        assert target.endswith(original_lines[line][end:])
        assert target[start:-len(original_lines[line][end:])] == (
            '"https://deno.land/std@0.2.0/assert/mod.ts"'
        )
        assert result.update is update
        assert result.referrer == update.referrer

    @pytest.mark.asyncio
    async def test_file_is_not_written(self, module_file):
        update = make_update(
            module_file, "https://deno.land/std@0.1.0/assert/mod.ts", "0.1.0", "0.2.0"
        )
        await exec_dependency_update(update)
        assert module_file.read_text(encoding="utf-8") == MODULE

    @pytest.mark.asyncio
    async def test_single_quotes_are_rewritten_as_double(self, module_file):
        update = make_update(
            module_file, "https://deno.land/x/hono@v0.1.0/mod.ts", "v0.1.0", "v0.2.0"
        )
        result = await exec_dependency_update(update)
        assert (
            "import { Hono } from \"https://deno.land/x/hono@v0.2.0/mod.ts\";"
            in result.content.split("\n")
        )

    @pytest.mark.asyncio
    async def test_multi_line_span_is_skipped_and_reported(self, module_file):
        update = make_update(
            module_file,
            "npm:express@^4.17.0",
            "^4.17.0",
            "^4.18.2",
            code=Span(start=Position(2, 20), end=Position(3, 1)),
        )

        assert await exec_dependency_update(update) is None
        assert module_file.read_text(encoding="utf-8") == MODULE
        assert get_error_handler().get_error_stats().get("PATCH_WARNING") == 1

    @pytest.mark.asyncio
    async def test_update_without_location_is_reported(self, module_file):
        update = without_location(
            make_update(module_file, "npm:express@^4.17.0", "^4.17.0", "^4.18.2")
        )

        assert await exec_dependency_update(update) is None
        assert get_error_handler().get_error_stats().get("PATCH_WARNING") == 1

    @pytest.mark.asyncio
    async def test_span_past_end_of_file_is_reported(self, module_file):
        update = make_update(
            module_file,
            "npm:express@^4.17.0",
            "^4.17.0",
            "^4.18.2",
            code=Span(start=Position(40, 20), end=Position(40, 42)),
        )

        assert await exec_dependency_update(update) is None
        assert get_error_handler().get_error_stats().get("PATCH_WARNING") == 1

    @pytest.mark.asyncio
    async def test_missing_referrer_raises(self, temp_dir):
        update = make_update(
            temp_dir / "gone.ts",
            "npm:express@4.17.0",
            "4.17.0",
            "4.18.2",
            code=Span(start=Position(0, 0), end=Position(0, 20)),
        )
        with pytest.raises(OSError):
            await exec_dependency_update(update)

    @pytest.mark.asyncio
    async def test_line_endings_are_preserved(self, temp_dir):
        content = 'import "npm:a@1.0.0";\r\nimport "npm:b@1.0.0";\r\n'
        path = temp_dir / "crlf.ts"
        path.write_bytes(content.encode("utf-8"))
        update = make_update(path, "npm:b@1.0.0", "1.0.0", "2.0.0")
        expected = 'import "npm:a@1.0.0";\r\nimport "npm:b@2.0.0";\r\n'

        result = await exec_dependency_update(update)
        assert result.content == expected


class TestBatchUpdates:
    """Test independent batch patching and its shared-referrer hazard."""

    @pytest.mark.asyncio
    async def test_three_independent_files(self, temp_dir):
        updates = []
        for index in range(3):
            path = temp_dir / f"mod{index}.ts"
            path.write_text(f'import "npm:pkg{index}@1.0.0";\n', encoding="utf-8")
            updates.append(make_update(path, f"npm:pkg{index}@1.0.0", "1.0.0", "1.1.0"))

        results = await exec_dependency_update_all(updates)

        assert len(results) == 3
        for index, result in enumerate(results):
            assert result.content == f'import "npm:pkg{index}@1.1.0";\n'

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, module_file, temp_dir):
        good = make_update(
            module_file, "https://deno.land/std@0.1.0/assert/mod.ts", "0.1.0", "0.2.0"
        )
        bad = make_update(
            temp_dir / "missing.ts",
            "npm:express@4.17.0",
            "4.17.0",
            "4.18.2",
            code=Span(start=Position(0, 0), end=Position(0, 20)),
        )

        results = await exec_dependency_update_all([bad, good])

        assert [r.update for r in results] == [good]
        assert get_error_handler().get_error_stats().get("FILESYSTEM_ERROR") == 1

    @pytest.mark.asyncio
    async def test_shared_referrer_loses_updates_when_applied_independently(
        self, module_file
    ):
        std = make_update(
            module_file, "https://deno.land/std@0.1.0/assert/mod.ts", "0.1.0", "0.2.0"
        )
        express = make_update(module_file, "npm:express@^4.17.0", "^4.17.0", "^4.18.2")

        results = await exec_dependency_update_all([std, express])

        # Each result carries only its own edit
        assert len(results) == 2
        assert "std@0.2.0" in results[0].content
        assert "express@^4.17.0" in results[0].content
        assert "express@^4.18.2" in results[1].content
        assert "std@0.1.0" in results[1].content

        await write_module_update_results(results)
        written = module_file.read_text(encoding="utf-8")
        assert "express@^4.18.2" in written
        assert "std@0.2.0" not in written


class TestGroupedUpdates:
    """Test single-pass patching of every update for a referrer."""

    @pytest.mark.asyncio
    async def test_shared_referrer_keeps_every_edit(self, module_file):
        updates = [
            make_update(
                module_file, "https://deno.land/std@0.1.0/assert/mod.ts", "0.1.0", "0.2.0"
            ),
            make_update(
                module_file, "https://deno.land/x/hono@v0.1.0/mod.ts", "v0.1.0", "v0.2.0"
            ),
            make_update(module_file, "npm:express@^4.17.0", "^4.17.0", "^4.18.2"),
        ]

        results = await exec_dependency_update_grouped(updates)

        assert len(results) == 1
        result = results[0]
        assert result.referrer == module_file.resolve().as_uri()
        assert result.updates == updates
        assert result.skipped == []
        assert result.content == (
            MODULE.replace("std@0.1.0", "std@0.2.0")
            .replace("'https://deno.land/x/hono@v0.1.0/mod.ts'", '"https://deno.land/x/hono@v0.2.0/mod.ts"')
            .replace("express@^4.17.0", "express@^4.18.2")
        )

        assert await write_file_update_results(results) == 1
        assert module_file.read_text(encoding="utf-8") == result.content

    @pytest.mark.asyncio
    async def test_two_literals_on_one_line(self, temp_dir):
        content = 'import "npm:a@1.0.0"; import "npm:bb@1.0.0";\n'
        path = temp_dir / "one_line.ts"
        path.write_text(content, encoding="utf-8")

        def span_of(literal):
            start = content.index(literal)
            return Span(start=Position(0, start), end=Position(0, start + len(literal)))

        first = make_update(path, "npm:a@1.0.0", "1.0.0", "1.10.0", code=span_of('"npm:a@1.0.0"'))
        second = make_update(path, "npm:bb@1.0.0", "1.0.0", "2.0.0", code=span_of('"npm:bb@1.0.0"'))

        results = await exec_dependency_update_grouped([first, second])

        assert results[0].content == 'import "npm:a@1.10.0"; import "npm:bb@2.0.0";\n'
        assert results[0].updates == [first, second]

    @pytest.mark.asyncio
    async def test_overlapping_span_is_skipped(self, temp_dir):
        content = 'import "npm:a@1.0.0";\n'
        path = temp_dir / "overlap.ts"
        path.write_text(content, encoding="utf-8")
        first = make_update(path, "npm:a@1.0.0", "1.0.0", "1.1.0")
        overlapping = make_update(
            path,
            "npm:a@1.0.0",
            "1.0.0",
            "1.2.0",
            code=Span(start=Position(0, 10), end=Position(0, 15)),
        )

        results = await exec_dependency_update_grouped([first, overlapping])

        assert results[0].updates == [overlapping]
        assert results[0].skipped == [first]
        assert get_error_handler().get_error_stats().get("PATCH_WARNING") == 1

    @pytest.mark.asyncio
    async def test_multi_line_update_listed_as_skipped(self, module_file):
        multi_line = make_update(
            module_file,
            "npm:express@^4.17.0",
            "^4.17.0",
            "^4.18.2",
            code=Span(start=Position(2, 20), end=Position(3, 1)),
        )

        results = await exec_dependency_update_grouped([multi_line])

        assert results[0].updates == []
        assert results[0].skipped == [multi_line]
        assert results[0].content == MODULE
        assert await write_file_update_results(results) == 0

    @pytest.mark.asyncio
    async def test_update_without_location_listed_as_skipped(self, module_file):
        update = make_update(module_file, "npm:express@^4.17.0", "^4.17.0", "^4.18.2")
        unlocated = without_location(
            make_update(
                module_file,
                "https://deno.land/std@0.1.0/assert/mod.ts",
                "0.1.0",
                "0.2.0",
            )
        )

        results = await exec_dependency_update_grouped([update, unlocated])

        assert results[0].updates == [update]
        assert results[0].skipped == [unlocated]
        assert get_error_handler().get_error_stats().get("PATCH_WARNING") == 1

    @pytest.mark.asyncio
    async def test_stale_span_does_not_abort_other_files(self, module_file, temp_dir):
        stale_file = temp_dir / "stale.ts"
        stale_file.write_text('import "npm:zod@3.0.0";\n', encoding="utf-8")
        good = make_update(module_file, "npm:express@^4.17.0", "^4.17.0", "^4.18.2")
        stale = make_update(
            stale_file,
            "npm:zod@3.0.0",
            "3.0.0",
            "3.22.4",
            code=Span(start=Position(9, 7), end=Position(9, 23)),
        )

        results = await exec_dependency_update_grouped([good, stale])
        by_referrer = {result.referrer: result for result in results}

        assert by_referrer[good.referrer].updates == [good]
        assert by_referrer[stale.referrer].updates == []
        assert by_referrer[stale.referrer].skipped == [stale]
        assert by_referrer[stale.referrer].content == 'import "npm:zod@3.0.0";\n'
        assert get_error_handler().get_error_stats().get("PATCH_WARNING") == 1

    @pytest.mark.asyncio
    async def test_dry_run_leaves_files_untouched(self, module_file):
        update = make_update(module_file, "npm:express@^4.17.0", "^4.17.0", "^4.18.2")
        results = await exec_dependency_update_grouped([update])
        assert "express@^4.18.2" in results[0].content
        assert module_file.read_text(encoding="utf-8") == MODULE
