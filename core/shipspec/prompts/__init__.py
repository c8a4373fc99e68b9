"""Prompt text, prompt builders and structured-output schemas."""
