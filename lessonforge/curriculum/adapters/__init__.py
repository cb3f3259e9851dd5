"""Completion-service adapters selected via `load_ai_config()`."""
