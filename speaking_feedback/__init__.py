"""IELTS speaking feedback service: configurable multi-step AI evaluation feeds."""

__version__ = "1.0.0"
