"""Tests for SAST output normalization and the scanner runner."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from shipspec.tools.exec import ExecError, ExecResult, ExecTimeoutError, ToolMissingError
from shipspec.tools.sast_scanner import (
    SASTScanner,
    map_semgrep_severity,
    map_trivy_severity,
    parse_gitleaks,
    parse_semgrep,
    parse_trivy,
)

SEMGREP_OUTPUT = json.dumps(
    {
        "results": [
            {
                "check_id": "python.lang.security.eval",
                "path": "app/main.py",
                "start": {"line": 10},
                "end": {"line": 12},
                "extra": {
                    "severity": "ERROR",
                    "message": "Avoid eval",
                    "metadata": {"cwe": ["CWE-95: Eval Injection"]},
                },
            },
            {"check_id": "style.rule", "path": "app/util.py"},
        ]
    }
)

GITLEAKS_OUTPUT = json.dumps(
    [
        {
            "RuleID": "aws-access-key",
            "Description": "AWS Access Key",
            "File": "config/settings.py",
            "StartLine": 3,
            "EndLine": 3,
        }
    ]
)

TRIVY_OUTPUT = json.dumps(
    {
        "Results": [
            {
                "Target": "package-lock.json",
                "Vulnerabilities": [
                    {"Severity": "CRITICAL", "VulnerabilityID": "CVE-2024-0001", "Title": "RCE"},
                    {"Severity": "UNKNOWN", "VulnerabilityID": "CVE-2024-0002"},
                ],
            },
            {
                "Target": ".env",
                "Secrets": [
                    {
                        "Severity": "HIGH",
                        "RuleID": "github-pat",
                        "Title": "GitHub PAT",
                        "StartLine": 1,
                        "EndLine": 1,
                    }
                ],
            },
        ]
    }
)


class TestSeverityMapping:
    @pytest.mark.parametrize(
        "raw,expected",
        [("ERROR", "high"), ("warning", "medium"), ("INFO", "info"), ("other", "medium")],
    )
    def test_semgrep(self, raw, expected):
        assert map_semgrep_severity(raw) == expected

    @pytest.mark.parametrize(
        "raw,expected",
        [("CRITICAL", "critical"), ("low", "low"), ("UNKNOWN", "info")],
    )
    def test_trivy(self, raw, expected):
        assert map_trivy_severity(raw) == expected


class TestParseSemgrep:
    def test_results(self):
        findings = parse_semgrep(SEMGREP_OUTPUT)

        assert len(findings) == 2
        first = findings[0]
        assert first.tool == "semgrep"
        assert first.severity == "high"
        assert first.rule == "python.lang.security.eval"
        assert first.start_line == 10
        assert first.end_line == 12
        assert first.cwe_id == "CWE-95: Eval Injection"

        second = findings[1]
        assert second.severity == "medium"
        assert second.message == ""
        assert second.start_line is None

    def test_empty_output(self):
        assert parse_semgrep("") == []
        assert parse_semgrep('{"results": []}') == []

    def test_unparseable_output_becomes_scanner_error(self):
        findings = parse_semgrep("Traceback: boom", stderr="fatal")

        assert len(findings) == 1
        assert findings[0].rule == "scanner_error"
        assert findings[0].severity == "high"
        assert findings[0].filepath == "(scanner)"
        assert findings[0].diagnostics == {"stdout": "Traceback: boom", "stderr": "fatal"}

    def test_schema_mismatch_becomes_scanner_error(self):
        findings = parse_semgrep('{"results": [{"path": "x"}]}')
        assert findings[0].rule == "scanner_error"
        assert "schema validation failed" in findings[0].message


class TestParseGitleaks:
    def test_results_are_always_high(self):
        findings = parse_gitleaks(GITLEAKS_OUTPUT)

        assert len(findings) == 1
        assert findings[0].severity == "high"
        assert findings[0].rule == "aws-access-key"
        assert findings[0].filepath == "config/settings.py"
        assert findings[0].start_line == 3

    @pytest.mark.parametrize("stdout", ["", "  ", "[]", "null"])
    def test_empty_reports(self, stdout):
        assert parse_gitleaks(stdout) == []

    def test_non_list_is_scanner_error(self):
        assert parse_gitleaks('{"RuleID": "x"}')[0].rule == "scanner_error"


class TestParseTrivy:
    def test_vulnerabilities_and_secrets(self):
        findings = parse_trivy(TRIVY_OUTPUT)

        assert [f.rule for f in findings] == ["CVE-2024-0001", "CVE-2024-0002", "github-pat"]
        assert findings[0].severity == "critical"
        assert findings[0].cve_id == "CVE-2024-0001"
        assert findings[0].message == "RCE"
        assert findings[1].severity == "info"
        assert findings[2].filepath == ".env"
        assert findings[2].start_line == 1

    def test_no_results(self):
        assert parse_trivy('{"Results": null}') == []

    def test_garbage(self):
        assert parse_trivy("not json")[0].rule == "scanner_error"


class TestSASTScanner:
    @pytest.mark.asyncio
    async def test_no_tools_configured(self, tmp_path: Path):
        result = await SASTScanner(tmp_path).run()
        assert result.findings == []
        assert result.skipped == ["No SAST tools configured or requested."]

    @pytest.mark.asyncio
    async def test_unsupported_tool_is_skipped(self, tmp_path: Path):
        result = await SASTScanner(tmp_path, tools=["bandit"]).run()
        assert result.skipped == ["bandit is not a supported scanner"]

    @pytest.mark.asyncio
    async def test_runs_each_tool_and_collects_findings(self, tmp_path: Path):
        async def fake_run(tool, args, **kwargs):
            if tool == "semgrep":
                return ExecResult(stdout=SEMGREP_OUTPUT, stderr="", exit_code=0)
            # gitleaks exits 1 when it finds leaks
            raise ExecError("exit 1", stdout=GITLEAKS_OUTPUT, exit_code=1)

        with patch("shipspec.tools.sast_scanner.run_with_limits", side_effect=fake_run) as mock:
            result = await SASTScanner(tmp_path, tools=["semgrep", "gitleaks"]).run()

        assert [f.tool for f in result.findings] == ["semgrep", "semgrep", "gitleaks"]
        assert result.skipped == []
        assert mock.call_args_list[0].kwargs["cwd"] == tmp_path
        assert mock.call_args_list[0].args[1] == ["scan", "--json", "--quiet"]

    @pytest.mark.asyncio
    async def test_gitleaks_exit_one_without_output_means_no_leaks(self, tmp_path: Path):
        mock = AsyncMock(side_effect=ExecError("exit 1", exit_code=1))
        with patch("shipspec.tools.sast_scanner.run_with_limits", mock):
            result = await SASTScanner(tmp_path, tools=["gitleaks"]).run()
        assert result.findings == []
        assert result.skipped == []

    @pytest.mark.asyncio
    async def test_missing_binary_is_skipped_with_install_hint(self, tmp_path: Path):
        mock = AsyncMock(side_effect=ToolMissingError("trivy"))
        with patch("shipspec.tools.sast_scanner.run_with_limits", mock):
            result = await SASTScanner(tmp_path, tools=["trivy"]).run()

        assert result.findings == []
        assert result.skipped[0].startswith("trivy failed: trivy not found.")
        assert "https://trivy.dev/" in result.skipped[0]

    @pytest.mark.asyncio
    async def test_timeout_becomes_finding(self, tmp_path: Path):
        mock = AsyncMock(side_effect=ExecTimeoutError("semgrep", 300))
        with patch("shipspec.tools.sast_scanner.run_with_limits", mock):
            result = await SASTScanner(tmp_path, tools=["semgrep"]).run()

        assert len(result.findings) == 1
        assert result.findings[0].rule == "scanner_timeout"
        assert result.findings[0].message == "semgrep timed out after 300 seconds"

    @pytest.mark.asyncio
    async def test_crash_without_output_is_skipped(self, tmp_path: Path):
        mock = AsyncMock(side_effect=ExecError("exit 2", stderr="bad flag", exit_code=2))
        with patch("shipspec.tools.sast_scanner.run_with_limits", mock):
            result = await SASTScanner(tmp_path, tools=["semgrep"]).run()

        assert result.findings == []
        assert result.skipped == ["semgrep failed: exit 2"]
