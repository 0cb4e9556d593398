"""Exceptions raised by the provider quality pipeline."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Fatal misconfiguration detected before any output is produced."""


class DataIntegrityViolation(RuntimeError):
    """Input rows that should agree with each other do not."""

    def __init__(self, message: str, key: object = None) -> None:
        super().__init__(message)
        self.key = key
