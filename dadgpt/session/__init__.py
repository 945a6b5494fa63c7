from dadgpt.session.models import (
    ConversationMessage,
    Session,
    ToolCallRequest,
    ToolResultRecord,
    Usage,
)
from dadgpt.session.store import SessionStore

__all__ = [
    "ConversationMessage",
    "Session",
    "SessionStore",
    "ToolCallRequest",
    "ToolResultRecord",
    "Usage",
]
