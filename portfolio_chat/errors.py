
class PortfolioChatError(Exception):
    """Base class for errors raised by the chat pipeline."""


class SessionNotFound(PortfolioChatError):
    def __init__(self, session_id: str):
        super().__init__(f"Unknown chat session: {session_id}")
        self.session_id = session_id


class RateLimitExceeded(PortfolioChatError):
    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class NotificationError(PortfolioChatError):
    """The notification e-mail could not be delivered."""
