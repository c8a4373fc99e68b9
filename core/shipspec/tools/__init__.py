"""Evidence collaborators: subprocess limits, retrieval, web search and SAST scanners."""

from shipspec.tools.exec import (
    ExecError,
    ExecResult,
    ExecTimeoutError,
    ToolMissingError,
    resolve_binary,
    run_with_limits,
)
from shipspec.tools.retriever import CodeChunk, Retriever, StaticRetriever, format_chunks
from shipspec.tools.sast_scanner import SASTFinding, SASTScanner, ScanResult
from shipspec.tools.web_search import WebSearchTool, format_results

__all__ = [
    "CodeChunk",
    "ExecError",
    "ExecResult",
    "ExecTimeoutError",
    "Retriever",
    "SASTFinding",
    "SASTScanner",
    "ScanResult",
    "StaticRetriever",
    "ToolMissingError",
    "WebSearchTool",
    "format_chunks",
    "format_results",
    "resolve_binary",
    "run_with_limits",
]
