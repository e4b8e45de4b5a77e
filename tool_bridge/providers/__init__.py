"""
Providers Package - Model runtime adapters.

This package contains the abstract ModelInterface and its adapters:
- OllamaModel: local Ollama runtime over HTTP
- ScriptedModel: deterministic in-process model for tests and demos
"""

from tool_bridge.providers.base import ModelInterface
from tool_bridge.providers.fake import ScriptedModel
from tool_bridge.providers.ollama import OllamaModel

__all__ = [
    "ModelInterface",
    "OllamaModel",
    "ScriptedModel",
]
