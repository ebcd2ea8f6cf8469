"""
Broker Package.

RabbitMQ management API access for the alert engine.
"""

from .client import RabbitMQManagementClient
from .registry import ServerRegistry


__all__ = [
    "RabbitMQManagementClient",
    "ServerRegistry",
]
