"""Quiz attempt lookup for delivery."""

from .source import AttemptSource, JsonAttemptSource

__all__ = [
    "AttemptSource",
    "JsonAttemptSource",
]
