"""Multi-platform mini-app build orchestration."""

__version__ = "0.1.0"
