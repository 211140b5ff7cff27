"""NeonVibe: stream multi-file web projects from an LLM into a live preview."""

__version__ = "0.1.0"
