"""
Project signal detection.

Cheap filesystem heuristics that describe a repository before any model is
involved: package manager, CI platform, tests, containers, IaC, security
hygiene files, languages and size.
"""

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build", ".venv", "venv", "__pycache__"})

LANGUAGE_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "typescript": (".ts", ".tsx"),
    "javascript": (".js", ".jsx"),
    "python": (".py",),
    "go": (".go",),
    "rust": (".rs",),
}

# First match wins
PACKAGE_MANAGER_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("npm", ("package-lock.json",)),
    ("yarn", ("yarn.lock",)),
    ("pnpm", ("pnpm-lock.yaml",)),
    ("pip", ("requirements.txt", "pyproject.toml")),
    ("go", ("go.mod",)),
    ("cargo", ("Cargo.toml",)),
]

CI_MARKERS: list[tuple[str, str]] = [
    ("github", ".github/workflows"),
    ("gitlab", ".gitlab-ci.yml"),
    ("jenkins", "Jenkinsfile"),
    ("circleci", ".circleci"),
]

TEST_FRAMEWORK_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("jest", ("jest.config.js", "jest.config.ts")),
    ("vitest", ("vitest.config.js", "vitest.config.ts")),
    ("pytest", ("pytest.ini", "conftest.py")),
]


class ProjectSignals(BaseModel):
    """What the filesystem says about a project."""

    package_manager: str | None = None
    has_ci: bool = False
    ci_platform: str | None = None
    has_tests: bool = False
    test_framework: str | None = None
    has_docker: bool = False
    has_iac: bool = False
    iac_tool: str | None = None
    has_env_example: bool = False
    has_security_policy: bool = False
    detected_languages: list[str] = Field(default_factory=list)
    file_count: int = 0


def _walk_files(root: Path) -> list[Path]:
    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in IGNORED_DIRS]
        files.extend(Path(dirpath, name).relative_to(root) for name in filenames)
    return files


def _is_test_file(rel: Path) -> bool:
    if "test" in rel.parts[:-1] or "tests" in rel.parts[:-1]:
        return True
    name = rel.name
    return ".test." in name or ".spec." in name or name.startswith("test_")


def gather_project_signals(project_path: Path | str) -> ProjectSignals:
    """
    Inspect ``project_path`` and return its signals.

    Raises:
        FileNotFoundError: If the path does not exist
    """
    root = Path(project_path)
    if not root.is_dir():
        raise FileNotFoundError(f"Project path does not exist: {root}")

    def exists(rel: str) -> bool:
        return (root / rel).exists()

    signals = ProjectSignals()

    for manager, markers in PACKAGE_MANAGER_MARKERS:
        if any(exists(m) for m in markers):
            signals.package_manager = manager
            break

    for platform, marker in CI_MARKERS:
        if exists(marker):
            signals.has_ci = True
            signals.ci_platform = platform
            break

    files = _walk_files(root)
    signals.file_count = len(files)

    if any(_is_test_file(f) for f in files):
        signals.has_tests = True
        for framework, markers in TEST_FRAMEWORK_MARKERS:
            if any(exists(m) for m in markers):
                signals.test_framework = framework
                break

    signals.has_docker = exists("Dockerfile") or exists("docker-compose.yml")

    suffixes = {f.suffix for f in files}
    if ".tf" in suffixes:
        signals.iac_tool = "terraform"
    elif exists("serverless.yml"):
        signals.iac_tool = "serverless"
    elif exists("cloudformation.yml"):
        signals.iac_tool = "cloudformation"
    elif ".bicep" in suffixes:
        signals.iac_tool = "bicep"
    signals.has_iac = signals.iac_tool is not None

    signals.has_env_example = exists(".env.example")
    signals.has_security_policy = exists("SECURITY.md")

    signals.detected_languages = [
        lang for lang, exts in LANGUAGE_EXTENSIONS.items() if any(e in suffixes for e in exts)
    ]

    logger.debug(
        f"Project signals for {root}: {signals.file_count} files, "
        f"languages={signals.detected_languages}"
    )
    return signals
