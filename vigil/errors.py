"""Exception types shared across Vigil components."""


class VigilError(Exception):
    """Base class for Vigil errors."""


class ConfigurationError(VigilError):
    """A required credential or identity is missing at startup. Fatal."""


class AuthorizationError(VigilError):
    """A message arrived from a conversation outside the allow-list."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} is not allowed")
        self.conversation_id = conversation_id


class AgentInvocationError(VigilError):
    """The agent stream failed or produced a malformed element."""


class PersistenceError(VigilError):
    """A durable store could not be read or written."""


class DeliveryError(VigilError):
    """The messenger could not deliver a message."""
