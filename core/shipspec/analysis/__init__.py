"""Static project analysis."""

from shipspec.analysis.project_signals import ProjectSignals, gather_project_signals

__all__ = ["ProjectSignals", "gather_project_signals"]
