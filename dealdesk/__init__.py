"""DealDesk opportunity pricing and pipeline-stage engine."""

__version__ = "1.0.0"
