# signalcore/errors.py
from __future__ import annotations


class SignalCoreError(Exception):
    pass


class StreamParseError(SignalCoreError):
    """The finished stream held no parseable JSON object."""


class ClusteringError(SignalCoreError):
    """The clustering collaborator was unavailable or answered garbage."""


class StoreError(SignalCoreError):
    """A signal document could not be read or written."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class LLMUnavailableError(SignalCoreError):
    """No language model client is configured."""
