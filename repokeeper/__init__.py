"""repokeeper - repository conventions and retrieval orchestration."""

__version__ = "0.1.0"
