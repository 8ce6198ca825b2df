from __future__ import annotations

import re
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from chat.core.history import HistoryStore, HistoryStoreError, InvalidConversationId
from chat.core.sweeper import HistorySweeper
from chat.images import image_parts
from chat.session import ConversationSession, build_chat_model
from config.settings import get_settings


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("gemini_chat")

CLEAR_HISTORY_QUERY = re.compile(r"clear|clear history|clear chat", re.IGNORECASE)
RESERVED_PARAMS = {"query", "chatid"}


@lru_cache(maxsize=1)
def get_store() -> HistoryStore:
    settings = get_settings()
    return HistoryStore(settings.history_dir, max_age_seconds=settings.history_max_age_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    store = get_store()
    sweeper = HistorySweeper(store, interval_seconds=settings.history_sweep_interval_seconds)
    logger.info(
        "Config: model=%s key_set=%s history_dir=%s max_age=%ss",
        settings.gemini_model,
        bool(settings.google_api_key),
        store.directory,
        settings.history_max_age_seconds,
    )
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(title="Gemini Chat", version="1.0.0", lifespan=lifespan)

# CORS: allow local frontend during development
if settings.app_env.lower() in {"dev", "development", "local"}:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def clear_history(store: HistoryStore, chatid: str) -> str:
    try:
        await store.clear(chatid)
    except HistoryStoreError as e:
        logger.error("Error deleting chat history: %s", e)
        return "Error clearing history"
    return "History cleared"


@app.get("/gemini")
async def gemini(request: Request):
    params = request.query_params
    chatid = params.get("chatid")
    if not chatid:
        return _error(400, "Chat ID (passcode) is required.")
    query = params.get("query") or ""

    store = get_store()
    try:
        store.path_for(chatid)
    except InvalidConversationId:
        logger.warning("Rejected chat id: %r", chatid)
        return _error(400, "Invalid chat ID.")

    if CLEAR_HISTORY_QUERY.fullmatch(query):
        return {"response": await clear_history(store, chatid), "chatid": chatid}

    images = image_parts(
        (key, value) for key, value in params.multi_items() if key not in RESERVED_PARAMS
    )
    try:
        logger.info(
            "Incoming query: chatid=%s query_len=%s images=%s",
            chatid,
            len(query),
            len(images),
        )
        session = ConversationSession(store, build_chat_model())
        reply = await session.respond(chatid, query, images)
    except Exception as e:
        logger.exception("Gemini request failed: %s", e)
        return _error(500, "Internal server error.")

    body: Dict[str, Any] = {"response": reply.text, "chatid": chatid}
    if reply.total_tokens is not None:
        body["totalTokens"] = reply.total_tokens
    return body


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
