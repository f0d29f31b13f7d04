"""Inference client, translation, web search, and the backend facade."""

from .backend import AssistantBackend, OperationKind
from .client import ClientSettings, InferenceClient

__all__ = ["AssistantBackend", "ClientSettings", "InferenceClient", "OperationKind"]
