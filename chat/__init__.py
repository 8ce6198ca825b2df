from chat.core.history import (
    ConversationRecord,
    HistoryStore,
    HistoryStoreError,
    InvalidConversationId,
    Turn,
)
from chat.core.sweeper import HistorySweeper
from chat.images import ImagePart, image_parts
from chat.session import ConversationSession, ModelRequest, build_chat_model, build_request

__all__ = [
    "ConversationRecord",
    "ConversationSession",
    "HistoryStore",
    "HistoryStoreError",
    "HistorySweeper",
    "ImagePart",
    "InvalidConversationId",
    "ModelRequest",
    "Turn",
    "build_chat_model",
    "build_request",
    "image_parts",
]
