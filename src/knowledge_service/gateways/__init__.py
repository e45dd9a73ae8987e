"""Adapters for external collaborators: embeddings, notifications and the decision oracle."""

from .embedding import EmbeddingGateway, create_embedding_gateway
from .notification import ChannelDirectory, DeliveryResult, NotificationPort, OwnerChannel, create_notifier
from .oracle import AnthropicDecisionOracle, DecisionOracle

__all__ = [
    "AnthropicDecisionOracle",
    "ChannelDirectory",
    "DecisionOracle",
    "DeliveryResult",
    "EmbeddingGateway",
    "NotificationPort",
    "OwnerChannel",
    "create_embedding_gateway",
    "create_notifier",
]
