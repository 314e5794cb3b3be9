"""Error taxonomy for the chat core.

Every error is scoped to the operation (and connection) that triggered it.
Over the socket a ``ChatError`` becomes a ``message_error`` event for the
originating connection only; over HTTP it becomes ``{"error": message}``
with ``status_code``.
"""


class ChatError(Exception):
    """Base exception for chat core errors."""
    code = "chat_error"

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(ChatError):
    """Malformed input: empty body, bad participant count, unknown event."""
    code = "validation_error"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NotAuthorizedError(ChatError):
    """The caller is not allowed to act on the target conversation or message."""
    code = "not_authorized"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=403)


class NotFoundError(ChatError):
    """Conversation, message or user does not exist (for this caller)."""
    code = "not_found"

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class PersistenceError(ChatError):
    """The document store is unavailable or rejected a write."""
    code = "persistence_failure"

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(message, status_code=503)


class DeliveryError(ChatError):
    """A target connection is gone. Never surfaced to the sender."""
    code = "delivery_failure"

    def __init__(self, message: str = "Connection unavailable"):
        super().__init__(message, status_code=500)
