"""
Shared fixtures for dep-bumper tests.

Registry traffic goes through httpx.MockTransport; no test touches the
network.
"""

import json
from pathlib import Path

import httpx
import pytest

from dep_bumper.cache_manager import reset_cache_manager
from dep_bumper.cli_config import reset_config
from dep_bumper.error_handling import get_error_handler

DENO_VERSIONS = {
    "/std/meta/versions.json": {"latest": "0.2.0", "versions": ["0.2.0", "0.1.0"]},
    "/hono/meta/versions.json": {
        "latest": "v0.2.0",
        "versions": ["v0.3.0-rc.1", "v0.2.0", "v0.1.0"],
    },
}

NPM_VERSIONS = {
    "/express": {"versions": {"4.17.0": {}, "4.18.2": {}, "5.0.0-beta.1": {}}},
    "/zod": {"versions": {"3.22.4": {}}},
}

ROOT_MODULE = """\
import { assert } from "https://deno.land/std@0.1.0/assert/mod.ts";
import { Hono } from 'https://deno.land/x/hono@v0.1.0/mod.ts';
import express from "npm:express@^4.17.0";
import { join } from "node:path";
import { Application } from "https://deno.land/x/oak/mod.ts";
import { helper } from "./lib.ts";

export function main() {
  return helper(join("a", "b"));
}
"""

LIB_MODULE = """\
import { z } from "npm:zod@3.22.4";

export const helper = (value: string) => z.string().parse(value);
"""


def registry_handler(request: httpx.Request) -> httpx.Response:
    """Serve version listings for the fixture registries."""
    if request.url.host == "cdn.deno.land":
        data = DENO_VERSIONS.get(request.url.path)
    elif request.url.host == "registry.npmjs.org":
        data = NPM_VERSIONS.get(request.url.path)
    else:
        data = None

    if data is None:
        return httpx.Response(404, json={"error": "not found"})
    return httpx.Response(200, json=data)


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch):
    """Fresh config, cache and error statistics for every test."""
    for key in ("DEP_BUMPER_NPM_TOKEN", "NPM_TOKEN", "DEP_BUMPER_LOAD_REMOTE"):
        monkeypatch.delenv(key, raising=False)
    reset_config()
    reset_cache_manager()
    get_error_handler().reset_stats()
    yield
    reset_config()
    reset_cache_manager()


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    return tmp_path


@pytest.fixture
def mock_transport() -> httpx.MockTransport:
    return httpx.MockTransport(registry_handler)


@pytest.fixture
def fixture_project(temp_dir) -> Path:
    """A two-module project with three upgradeable imports; returns the root."""
    root = temp_dir / "mod.ts"
    root.write_text(ROOT_MODULE, encoding="utf-8")
    (temp_dir / "lib.ts").write_text(LIB_MODULE, encoding="utf-8")
    return root


@pytest.fixture
def sample_config_file(temp_dir) -> Path:
    config_file = temp_dir / "config.json"
    config_file.write_text(
        json.dumps({"update": {"rate_limit": 5.0, "max_concurrent": 4}}),
        encoding="utf-8",
    )
    return config_file


@pytest.fixture
def registry_responses():
    """The fixture registry handler, for tests that wrap it."""
    return registry_handler
