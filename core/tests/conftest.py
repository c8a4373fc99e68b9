"""Shared fixtures for workflow tests."""

from pathlib import Path

import pytest

from shipspec.config import RuntimeConfig
from shipspec.tools.retriever import CodeChunk, StaticRetriever


@pytest.fixture
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    """A config that never reads ~/.shipspec or SHIPSPEC_* variables."""
    return RuntimeConfig(
        model="mock/scripted",
        max_tokens=2048,
        api_key=None,
        api_base=None,
        max_context_tokens=16000,
        reserved_output_tokens=4000,
        checkpoint_dir=tmp_path / "checkpoints",
        worker_concurrency=4,
        worker_timeout_seconds=5,
        web_search_provider="auto",
        sast_tools=[],
        interactive_mode=True,
    )


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A small TypeScript service with CI and a Dockerfile."""
    root = tmp_path / "project"
    for rel, content in {
        "package-lock.json": "{}",
        "src/auth.ts": "export function login(user: string, password: string) {}",
        "src/server.ts": "app.listen(process.env.PORT)",
        "src/auth.test.ts": "test('login', () => {})",
        ".github/workflows/ci.yml": "on: push",
        "Dockerfile": "FROM node:20",
    }.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def retriever() -> StaticRetriever:
    return StaticRetriever(
        [
            CodeChunk(
                content="export function login(user: string, password: string) {}",
                filepath="src/auth.ts",
                start_line=1,
                end_line=1,
                language="typescript",
            ),
            CodeChunk(
                content="app.listen(process.env.PORT)",
                filepath="src/server.ts",
                start_line=1,
                end_line=1,
                language="typescript",
            ),
        ]
    )
