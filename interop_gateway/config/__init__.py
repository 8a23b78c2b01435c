"""
Configuration module for gateway settings.
"""

from interop_gateway.config.settings import GatewaySettings

__all__ = ["GatewaySettings"]
