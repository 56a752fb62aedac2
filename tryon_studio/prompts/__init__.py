"""Prompt text and prompt assembly."""
