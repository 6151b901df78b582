"""persona-panel: synthetic focus-group feedback from LLM-simulated personas."""

__version__ = "0.1.0"
