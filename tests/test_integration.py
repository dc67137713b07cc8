"""
Integration tests for dep-bumper.
Tests complete collect -> patch -> write workflows.
"""

import json

import httpx
import pytest

from dep_bumper import (
    collect_dependency_update_all,
    create_dependency_update,
    create_pull_request_body,
    exec_dependency_update_all,
    exec_dependency_update_grouped,
    write_file_update_results,
)
from dep_bumper.cli_config import get_config, reset_config
from dep_bumper.graph import DependencyEdge, ExternalModule, ModuleSource, default_load
from dep_bumper.updater import DependencyUpdater

REMOTE_MODULE = 'export * from "https://deno.land/std@0.1.0/fmt/colors.ts";\n'


@pytest.fixture
def mock_updater(monkeypatch, mock_transport):
    monkeypatch.setattr(
        "dep_bumper.updater.get_dependency_updater",
        lambda: DependencyUpdater(transport=mock_transport),
    )


class TestEndToEndUpdating:
    """Test complete update workflows."""

    @pytest.mark.asyncio
    async def test_collect_patch_and_write(self, fixture_project, mock_transport):
        async with DependencyUpdater(transport=mock_transport) as updater:
            updates = await updater.collect_dependency_update_all(fixture_project)

        results = await exec_dependency_update_grouped(updates)
        assert await write_file_update_results(results) == 1

        async with DependencyUpdater(transport=mock_transport) as updater:
            assert await updater.collect_dependency_update_all(fixture_project) == []

    @pytest.mark.asyncio
    async def test_updates_across_several_referrers(self, fixture_project, mock_transport):
        lib = fixture_project.parent / "lib.ts"
        lib.write_text('import { z } from "npm:zod@3.0.0";\n', encoding="utf-8")

        async with DependencyUpdater(transport=mock_transport) as updater:
            updates = await updater.collect_dependency_update_all(fixture_project)

        assert len(updates) == 4
        assert {u.referrer for u in updates} == {
            fixture_project.resolve().as_uri(),
            lib.resolve().as_uri(),
        }

        results = await exec_dependency_update_grouped(updates)
        assert sorted(len(r.updates) for r in results) == [1, 3]
        await write_file_update_results(results)
        assert lib.read_text(encoding="utf-8") == 'import { z } from "npm:zod@3.22.4";\n'

    @pytest.mark.asyncio
    async def test_independent_patches_per_file(self, fixture_project, mock_transport):
        async with DependencyUpdater(transport=mock_transport) as updater:
            updates = await updater.collect_dependency_update_all(fixture_project)

        results = await exec_dependency_update_all(updates)
        assert len(results) == 3
        for result in results:
            assert result.update.new_specifier in result.content
            assert result.update.specifier not in result.content

    @pytest.mark.asyncio
    async def test_pull_request_body(self, fixture_project, mock_transport):
        async with DependencyUpdater(transport=mock_transport) as updater:
            updates = await updater.collect_dependency_update_all(fixture_project)

        body = create_pull_request_body(updates)
        assert body.splitlines()[2:] == [
            "- deno.land/std 0.1.0 -> 0.2.0",
            "- deno.land/x/hono v0.1.0 -> v0.2.0",
            "- express ^4.17.0 -> ^4.18.2",
        ]


class TestModuleFunctions:
    """Test the module-level entry points."""

    @pytest.mark.asyncio
    async def test_collect_dependency_update_all(self, mock_updater, fixture_project):
        updates = await collect_dependency_update_all(fixture_project)
        assert len(updates) == 3

    @pytest.mark.asyncio
    async def test_create_dependency_update_from_specifier(self, mock_updater):
        update = await create_dependency_update("npm:express@4.17.0")
        assert update.version.to == "4.18.2"
        assert update.referrer is None
        assert update.code is None


class TestErrorRecovery:
    """Test that registry failures only drop the affected edges."""

    @pytest.mark.asyncio
    async def test_partial_registry_failure(self, fixture_project, registry_responses):
        def handler(request):
            if "hono" in request.url.path:
                return httpx.Response(503, text="unavailable")
            return registry_responses(request)

        async with DependencyUpdater(transport=httpx.MockTransport(handler)) as updater:
            updates = await updater.collect_dependency_update_all(fixture_project)

        assert {u.name for u in updates} == {"deno.land/std", "express"}

    @pytest.mark.asyncio
    async def test_registry_offline(self, fixture_project):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with DependencyUpdater(transport=httpx.MockTransport(handler)) as updater:
            assert await updater.collect_dependency_update_all(fixture_project) == []


class TestRemoteModules:
    """Test walking into http(s) modules."""

    @pytest.mark.asyncio
    async def test_remote_module_edges_are_collected(self, temp_dir, mock_transport):
        remote = "https://example.com/deps.ts"
        root = temp_dir / "mod.ts"
        root.write_text(f'import "{remote}";\n', encoding="utf-8")

        async def load(specifier):
            if specifier == remote:
                return ModuleSource(specifier=specifier, content=REMOTE_MODULE)
            if specifier.startswith("file:"):
                return await default_load(specifier)
            return ExternalModule(specifier=specifier)

        async with DependencyUpdater(transport=mock_transport) as updater:
            skipped = await updater.collect_dependency_update_all(root, load=load)
            walked = await updater.collect_dependency_update_all(
                root, load_remote=True, load=load
            )

        assert skipped == []
        assert len(walked) == 1
        assert walked[0].referrer == remote
        assert walked[0].version.to == "0.2.0"


class TestConfigurationIntegration:
    """Test configuration sources feeding the engine."""

    def test_config_file_in_working_directory(self, temp_dir, monkeypatch):
        (temp_dir / ".dep-bumper.json").write_text(
            json.dumps({"update": {"max_concurrent": 3, "include_prereleases": True}}),
            encoding="utf-8",
        )
        monkeypatch.chdir(temp_dir)
        reset_config()

        config = get_config()
        assert config.update.max_concurrent == 3
        assert config.update.include_prereleases is True

    def test_yaml_config_file(self, temp_dir, monkeypatch):
        (temp_dir / ".dep-bumper.yaml").write_text(
            "network:\n  registry_urls:\n    npm: https://npm.example.com\n",
            encoding="utf-8",
        )
        monkeypatch.chdir(temp_dir)
        reset_config()

        config = get_config()
        assert config.network.registry_urls["npm"] == "https://npm.example.com"
        assert config.network.registry_urls["deno"] == "https://cdn.deno.land"

    def test_environment_overrides(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("DEP_BUMPER_LOAD_REMOTE", "true")
        monkeypatch.setenv("DEP_BUMPER_RATE_LIMIT", "2.5")
        reset_config()

        config = get_config()
        assert config.update.load_remote is True
        assert config.update.rate_limit == 2.5

    def test_zero_cache_ttl_from_environment(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("DEP_BUMPER_CACHE_TTL_SECONDS", "0")
        reset_config()

        assert get_config().performance.cache_ttl_seconds == 0

    def test_invalid_config_falls_back_to_defaults(self, temp_dir, monkeypatch):
        (temp_dir / ".dep-bumper.json").write_text(
            json.dumps({"update": {"max_concurrent": 0}}), encoding="utf-8"
        )
        monkeypatch.chdir(temp_dir)
        reset_config()

        assert get_config().update.max_concurrent == 20

    @pytest.mark.asyncio
    async def test_prereleases_from_config(self, temp_dir, monkeypatch, mock_transport):
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("DEP_BUMPER_INCLUDE_PRERELEASES", "1")
        reset_config()

        async with DependencyUpdater(transport=mock_transport) as updater:
            update = await updater.create_dependency_update(
                DependencyEdge("npm:express@4.17.0")
            )
        assert update.version.to == "5.0.0-beta.1"
