"""AI assistant integration."""

from .agent import AiAgent, iter_stream_deltas

__all__ = ["AiAgent", "iter_stream_deltas"]
