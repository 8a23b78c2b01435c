"""
HL7 v2.x message router.

Routes parsed messages by event type to registered handlers.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from interop_gateway.hl7.message_parser import ParsedMessage

logger = logging.getLogger(__name__)

Handler = Callable[[ParsedMessage], Any]


class HL7MessageRouter:
    """Router for HL7 v2.x messages by ``TYPE^TRIGGER``."""

    def __init__(self):
        self.handlers: Dict[str, Handler] = {}

    def register_handler(self, message_type: str, handler: Handler) -> None:
        """
        Register a handler for a message type.

        Args:
            message_type: Exact event (``ADT^A01``) or a wildcard (``ADT^*``)
            handler: Callable receiving the ParsedMessage
        """
        self.handlers[message_type] = handler
        logger.debug("Registered handler for message type: %s", message_type)

    def resolve(self, message: ParsedMessage) -> Optional[Handler]:
        handler = self.handlers.get(message.event_type)
        if handler is not None:
            return handler
        return self.handlers.get(f"{message.message_type}^*")

    def route(self, message: ParsedMessage) -> Optional[Any]:
        """
        Route a parsed message to its handler.

        Exact ``TYPE^TRIGGER`` registrations win over ``TYPE^*`` wildcards.

        Returns:
            Result from the handler, or None if no handler matches
        """
        handler = self.resolve(message)
        if handler is None:
            logger.warning("No handler found for message type: %s", message.event_type)
            return None
        logger.debug("Routing message %s (%s)", message.message_id, message.event_type)
        return handler(message)

    def get_supported_types(self) -> List[str]:
        return list(self.handlers.keys())
