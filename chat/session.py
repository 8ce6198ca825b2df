from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from chat.core.history import ConversationRecord, HistoryStore, Turn
from chat.images import ImagePart
from config.settings import Settings, get_settings


logger = logging.getLogger(__name__)


def build_chat_model(settings: Optional[Settings] = None) -> ChatGoogleGenerativeAI:
    settings = settings or get_settings()
    if not settings.google_api_key:
        raise RuntimeError(
            "GOOGLE_API_KEY not set. Please configure it in environment or .env"
        )

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.google_api_key,
        temperature=settings.temperature,
        top_p=settings.top_p,
        max_output_tokens=settings.max_output_tokens,
    )


@dataclass(frozen=True)
class ModelRequest:
    """Flattened history, the new query and its images, in model order."""

    history: Tuple[str, ...]
    query: str
    images: Tuple[ImagePart, ...] = ()

    @property
    def contents(self) -> List[Union[str, ImagePart]]:
        return [*self.history, self.query, *self.images]

    def to_messages(self) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        for position, text in enumerate(self.history):
            if position % 2 == 0:
                messages.append(HumanMessage(content=text))
            else:
                messages.append(AIMessage(content=text))
        if self.images:
            content: List[Any] = [{"type": "text", "text": self.query}]
            content.extend(image.to_content() for image in self.images)
            messages.append(HumanMessage(content=content))
        else:
            messages.append(HumanMessage(content=self.query))
        return messages


def build_request(
    record: ConversationRecord, query: str, images: Sequence[ImagePart] = ()
) -> ModelRequest:
    history = tuple(text for turn in record.turns for text in turn)
    return ModelRequest(history=history, query=query, images=tuple(images))


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for item in content or []:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict) and item.get("type") == "text":
            parts.append(item.get("text") or "")
    return "".join(parts)


@dataclass
class SessionReply:
    text: str
    total_tokens: Optional[int]


class ConversationSession:
    def __init__(self, store: HistoryStore, model: BaseChatModel):
        self.store = store
        self.model = model

    async def generate(self, request: ModelRequest) -> str:
        """Stream the completion and return it once the stream has ended."""
        fragments: List[str] = []
        async for chunk in self.model.astream(request.to_messages()):
            fragments.append(_chunk_text(chunk))
        return "".join(fragments)

    async def count_tokens(self, request: ModelRequest) -> Optional[int]:
        try:
            return await asyncio.to_thread(
                self.model.get_num_tokens_from_messages, request.to_messages()
            )
        except Exception as exc:
            logger.warning("Token count failed, continuing without it: %s", exc)
            return None

    async def commit(
        self, record: ConversationRecord, query: str, response: str
    ) -> ConversationRecord:
        return await self.store.append(record, Turn(query, response))

    async def respond(
        self, conversation_id: str, query: str, images: Sequence[ImagePart] = ()
    ) -> SessionReply:
        record = await self.store.load(conversation_id)
        request = build_request(record, query, images)
        total_tokens = await self.count_tokens(request)
        if total_tokens is not None:
            logger.info("Total tokens: %s", total_tokens)
        text = await self.generate(request)
        record = await self.commit(record, query, text)
        logger.info(
            "Model responded: chatid=%s chars=%s turns=%s",
            conversation_id,
            len(text),
            len(record.turns),
        )
        return SessionReply(text=text, total_tokens=total_tokens)
