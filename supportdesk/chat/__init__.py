"""Live support chat: session state machine, models and orchestration."""

from .models import ChatMessage, ChatSession, OpenSessionResult
from .service import SupportChatService
from .state import (
    ChatEvent,
    ChatSessionStateMachine,
    ChatSessionStatus,
    InvalidChatTransitionError,
    build_preview,
    clamp_priority,
)

__all__ = [
    "ChatEvent",
    "ChatMessage",
    "ChatSession",
    "ChatSessionStateMachine",
    "ChatSessionStatus",
    "InvalidChatTransitionError",
    "OpenSessionResult",
    "SupportChatService",
    "build_preview",
    "clamp_priority",
]
