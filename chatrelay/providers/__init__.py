"""chatrelay provider layer.

The only way the upstream model is called. The stream producer talks to
LiteLLMCompletionSource through the CompletionSource interface.
"""

from chatrelay.providers.base import CompletionSource
from chatrelay.providers.litellm_provider import LiteLLMCompletionSource
from chatrelay.providers.registry import default_config_path, load_config

__all__ = [
    "CompletionSource",
    "LiteLLMCompletionSource",
    "default_config_path",
    "load_config",
]
