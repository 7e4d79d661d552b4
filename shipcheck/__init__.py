"""Change-aware CI orchestration driven by GitHub check runs."""

__version__ = "0.1.0"
