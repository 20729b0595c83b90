"""
Exception types for Cortex.

Only ConfigurationError escapes the public API. The others are raised by
optional capabilities and converted into graceful degradation by the
engine.
"""


class CortexError(Exception):
    """Base class for Cortex errors."""


class ConfigurationError(CortexError):
    """Invalid configuration, raised early at construction time."""


class CapabilityUnavailable(CortexError):
    """An optional capability (embeddings, LLM, ledger) is absent or failing."""

    def __init__(self, capability: str, reason: str = ""):
        self.capability = capability
        self.reason = reason
        message = f"{capability} unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class LLMResponseError(CortexError):
    """The LLM returned an empty or unparseable response."""
