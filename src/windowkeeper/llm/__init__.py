"""Claude API integration."""

from .claude import to_message_params, usage_from_response

__all__ = ["to_message_params", "usage_from_response"]
