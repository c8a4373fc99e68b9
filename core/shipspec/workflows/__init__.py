"""Workflow graphs built on the shipspec engine."""
