"""
SAST scanner runner.

Runs semgrep, gitleaks and trivy through ``run_with_limits`` and normalizes
their JSON output into ``SASTFinding`` records. A scanner that produces
unparseable output or times out yields a ``scanner_error`` /
``scanner_timeout`` finding instead of failing the whole scan; a missing
binary is reported in ``ScanResult.skipped``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from shipspec.tools.exec import (
    ExecError,
    ExecTimeoutError,
    ToolMissingError,
    run_with_limits,
)

logger = logging.getLogger(__name__)

ScannerName = Literal["semgrep", "gitleaks", "trivy"]
Severity = Literal["critical", "high", "medium", "low", "info"]

SCANNER_FILEPATH = "(scanner)"

SCANNER_COMMANDS: dict[str, list[str]] = {
    "semgrep": ["scan", "--json", "--quiet"],
    "gitleaks": ["detect", "--no-git", "--report-format", "json", "--report-path", "-"],
    "trivy": ["fs", ".", "--format", "json", "--quiet"],
}

INSTALL_HINTS = {
    "semgrep": "Install it: pip install semgrep",
    "gitleaks": "Install it: https://github.com/gitleaks/gitleaks",
    "trivy": "Install it: https://trivy.dev/",
}


class SASTFinding(BaseModel):
    """A normalized static-analysis finding."""

    tool: ScannerName
    severity: Severity
    rule: str
    message: str
    filepath: str
    start_line: int | None = None
    end_line: int | None = None
    cwe_id: str | None = None
    cve_id: str | None = None
    diagnostics: dict[str, Any] | None = None


class ScanResult(BaseModel):
    findings: list[SASTFinding] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


# Raw scanner output shapes, validated before normalization


class _SemgrepPosition(BaseModel):
    line: int


class _SemgrepExtra(BaseModel):
    severity: str | None = None
    message: str | None = None
    metadata: dict[str, Any] | None = None


class _SemgrepResult(BaseModel):
    check_id: str
    path: str
    start: _SemgrepPosition | None = None
    end: _SemgrepPosition | None = None
    extra: _SemgrepExtra | None = None


class _SemgrepOutput(BaseModel):
    results: list[_SemgrepResult] | None = None


class _GitleaksResult(BaseModel):
    RuleID: str
    Description: str
    File: str
    StartLine: int
    EndLine: int


_GITLEAKS_OUTPUT = TypeAdapter(list[_GitleaksResult])


class _TrivyVulnerability(BaseModel):
    Severity: str
    VulnerabilityID: str
    Title: str | None = None
    Description: str | None = None


class _TrivySecret(BaseModel):
    Severity: str
    RuleID: str
    Title: str
    StartLine: int
    EndLine: int


class _TrivyResult(BaseModel):
    Target: str
    Vulnerabilities: list[_TrivyVulnerability] | None = None
    Secrets: list[_TrivySecret] | None = None


class _TrivyOutput(BaseModel):
    Results: list[_TrivyResult] | None = None


def map_semgrep_severity(severity: str) -> Severity:
    s = severity.lower()
    if s == "error":
        return "high"
    if s == "warning":
        return "medium"
    if s == "info":
        return "info"
    return "medium"


def map_trivy_severity(severity: str) -> Severity:
    s = severity.lower()
    if s in ("critical", "high", "medium", "low"):
        return s
    return "info"


def scanner_error(
    tool: ScannerName, message: str, stdout: str = "", stderr: str = ""
) -> SASTFinding:
    return SASTFinding(
        tool=tool,
        severity="high",
        rule="scanner_error",
        message=message,
        filepath=SCANNER_FILEPATH,
        diagnostics={"stdout": stdout, "stderr": stderr},
    )


def parse_semgrep(stdout: str, stderr: str = "") -> list[SASTFinding]:
    if not stdout.strip():
        return []
    try:
        data = _SemgrepOutput.model_validate(json.loads(stdout))
    except json.JSONDecodeError as e:
        return [scanner_error("semgrep", f"Failed to parse Semgrep output: {e}", stdout, stderr)]
    except ValidationError as e:
        return [
            scanner_error(
                "semgrep", f"Semgrep output schema validation failed: {e}", stdout, stderr
            )
        ]

    findings = []
    for r in data.results or []:
        extra = r.extra or _SemgrepExtra()
        cwe = (extra.metadata or {}).get("cwe")
        if isinstance(cwe, list):
            cwe = cwe[0] if cwe else None
        findings.append(
            SASTFinding(
                tool="semgrep",
                severity=map_semgrep_severity(extra.severity or ""),
                rule=r.check_id,
                message=extra.message or "",
                filepath=r.path,
                start_line=r.start.line if r.start else None,
                end_line=r.end.line if r.end else None,
                cwe_id=cwe,
            )
        )
    return findings


def parse_gitleaks(stdout: str, stderr: str = "") -> list[SASTFinding]:
    trimmed = stdout.strip()
    if not trimmed or trimmed in ("[]", "null"):
        return []
    try:
        results = _GITLEAKS_OUTPUT.validate_python(json.loads(trimmed))
    except json.JSONDecodeError as e:
        return [scanner_error("gitleaks", f"Failed to parse Gitleaks output: {e}", stdout, stderr)]
    except ValidationError as e:
        return [
            scanner_error(
                "gitleaks", f"Gitleaks output schema validation failed: {e}", stdout, stderr
            )
        ]

    return [
        SASTFinding(
            tool="gitleaks",
            severity="high",
            rule=r.RuleID,
            message=r.Description,
            filepath=r.File,
            start_line=r.StartLine,
            end_line=r.EndLine,
        )
        for r in results
    ]


def parse_trivy(stdout: str, stderr: str = "") -> list[SASTFinding]:
    if not stdout.strip():
        return []
    try:
        data = _TrivyOutput.model_validate(json.loads(stdout))
    except json.JSONDecodeError as e:
        return [scanner_error("trivy", f"Failed to parse Trivy output: {e}", stdout, stderr)]
    except ValidationError as e:
        return [
            scanner_error("trivy", f"Trivy output schema validation failed: {e}", stdout, stderr)
        ]

    findings: list[SASTFinding] = []
    for result in data.Results or []:
        for vuln in result.Vulnerabilities or []:
            findings.append(
                SASTFinding(
                    tool="trivy",
                    severity=map_trivy_severity(vuln.Severity),
                    rule=vuln.VulnerabilityID,
                    message=vuln.Title or vuln.Description or "",
                    filepath=result.Target,
                    cve_id=vuln.VulnerabilityID,
                )
            )
        for secret in result.Secrets or []:
            findings.append(
                SASTFinding(
                    tool="trivy",
                    severity=map_trivy_severity(secret.Severity),
                    rule=secret.RuleID,
                    message=secret.Title,
                    filepath=result.Target,
                    start_line=secret.StartLine,
                    end_line=secret.EndLine,
                )
            )
    return findings


PARSERS = {
    "semgrep": parse_semgrep,
    "gitleaks": parse_gitleaks,
    "trivy": parse_trivy,
}


class SASTScanner:
    """Runs the configured scanners sequentially against a project directory."""

    def __init__(
        self,
        project_path: Path | str = ".",
        tools: list[str] | None = None,
        timeout_seconds: float = 300,
        max_output_mb: int = 10,
    ):
        self.project_path = Path(project_path)
        self.tools = list(tools or [])
        self.timeout_seconds = timeout_seconds
        self.max_output_mb = max_output_mb

    async def _run_tool(self, tool: ScannerName) -> list[SASTFinding]:
        parse = PARSERS[tool]
        try:
            result = await run_with_limits(
                tool,
                SCANNER_COMMANDS[tool],
                cwd=self.project_path,
                timeout_seconds=self.timeout_seconds,
                max_output_mb=self.max_output_mb,
            )
            return parse(result.stdout, result.stderr)
        except ToolMissingError:
            raise
        except ExecTimeoutError as e:
            return [
                SASTFinding(
                    tool=tool,
                    severity="high",
                    rule="scanner_timeout",
                    message=str(e),
                    filepath=SCANNER_FILEPATH,
                )
            ]
        except ExecError as e:
            # semgrep/gitleaks/trivy exit non-zero when they find something
            if e.stdout:
                return parse(e.stdout, e.stderr)
            if tool == "gitleaks" and e.exit_code == 1:
                return []
            raise

    async def run(self, tools: list[str] | None = None) -> ScanResult:
        """
        Run ``tools`` (or the configured tools) and collect findings.

        Never raises for a single scanner's failure; the reason lands in
        ``skipped`` instead.
        """
        to_run = tools if tools is not None else self.tools
        if not to_run:
            return ScanResult(skipped=["No SAST tools configured or requested."])

        result = ScanResult()
        for tool in to_run:
            if tool not in PARSERS:
                result.skipped.append(f"{tool} is not a supported scanner")
                continue
            try:
                findings = await self._run_tool(tool)
            except ToolMissingError as e:
                result.skipped.append(f"{tool} failed: {e} {INSTALL_HINTS[tool]}")
                continue
            except (ExecError, ValueError) as e:
                result.skipped.append(f"{tool} failed: {e}")
                continue
            logger.info(f"🔎 {tool}: {len(findings)} finding(s)")
            result.findings.extend(findings)
        return result
