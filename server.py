import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from schedule_chat.catalog_loader import catalog_from_payload, load_catalog
from schedule_chat.conversation_cache import GLOBAL_CONVERSATION_CACHE, ConversationSession
from schedule_chat.entities import DecodedTurn
from schedule_chat.schedule_resolver import ScheduleRejectedException

load_dotenv()
SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("SERVER_PORT", "8000"))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

logger = logging.getLogger("schedule_chat")


async def _sweep_loop() -> None:
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        GLOBAL_CONVERSATION_CACHE.sweep_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(_sweep_loop())
    try:
        yield
    finally:
        task.cancel()


app = FastAPI(lifespan=lifespan)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class OpenConversation(BaseModel):
    courses: Optional[list[Any]] = None
    suggestions: Optional[list[str]] = None


class UserMessage(BaseModel):
    text: str


class Chunk(BaseModel):
    text: str = ""
    is_final: bool = False


class AbortTurn(BaseModel):
    reason: Optional[str] = None


class GroupSelection(BaseModel):
    group_ids: list[str] = Field(default_factory=list)


def _session(conversation_id: str) -> ConversationSession:
    try:
        return GLOBAL_CONVERSATION_CACHE.get(conversation_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _turn_payload(turn: DecodedTurn, session: ConversationSession) -> dict:
    return {
        "turn_id": turn.turn_id,
        "status": turn.status.value,
        "complete": turn.complete,
        "reply": turn.reply,
        "rationale": turn.rationale,
        "schedule": (
            [g.model_dump(by_alias=True, mode="json") for g in turn.schedule_groups]
            if turn.schedule is not None
            else None
        ),
        "unknown_group_ids": turn.unknown_group_ids,
        "suggestions": session.active_suggestions,
        "notice": session.last_notice,
    }


@app.put("/conversations/{conversation_id}")
async def open_conversation(conversation_id: str, body: OpenConversation):
    try:
        if body.courses is not None:
            catalog = catalog_from_payload(body.courses)
        else:
            catalog = load_catalog()
    except (ValueError, FileNotFoundError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    session = GLOBAL_CONVERSATION_CACHE.open(conversation_id, catalog, default_suggestions=body.suggestions)
    return {
        "status": "success",
        "conversation_id": session.conversation_id,
        "suggestions": session.active_suggestions,
    }


@app.delete("/conversations/{conversation_id}")
async def discard_conversation(conversation_id: str):
    if not GLOBAL_CONVERSATION_CACHE.discard(conversation_id):
        raise HTTPException(status_code=404, detail=f"Unknown conversation: {conversation_id}")
    return {"status": "success"}


@app.post("/conversations/{conversation_id}/messages")
async def add_message(conversation_id: str, message: UserMessage):
    session = _session(conversation_id)
    session.add_user_message(message.text)
    return {"status": "success"}


@app.post("/conversations/{conversation_id}/turns/{turn_id}/chunks")
async def feed_chunk(conversation_id: str, turn_id: str, chunk: Chunk):
    session = _session(conversation_id)
    try:
        turn = session.feed_chunk(turn_id, chunk.text, is_final=chunk.is_final)
        return _turn_payload(turn, session)
    except Exception as e:
        logger.exception(f"feed_chunk failed for {conversation_id}/{turn_id}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/conversations/{conversation_id}/turns/{turn_id}/abort")
async def abort_turn(conversation_id: str, turn_id: str, body: AbortTurn):
    session = _session(conversation_id)
    turn = session.abort_turn(turn_id, reason=body.reason)
    return {
        "notice": session.last_notice,
        "turn": _turn_payload(turn, session) if turn is not None else None,
    }


@app.get("/conversations/{conversation_id}/turns/{turn_id}")
async def get_turn(conversation_id: str, turn_id: str):
    session = _session(conversation_id)
    turn = session.reconciler.get(turn_id)
    if turn is None:
        raise HTTPException(status_code=404, detail=f"Unknown turn: {turn_id}")
    return _turn_payload(turn, session)


@app.get("/conversations/{conversation_id}/suggestions")
async def get_suggestions(conversation_id: str):
    session = _session(conversation_id)
    return {"suggestions": session.active_suggestions}


@app.post("/conversations/{conversation_id}/schedule/resolve")
async def resolve_schedule(conversation_id: str, selection: GroupSelection):
    session = _session(conversation_id)
    report = session.resolve(selection.group_ids)
    return {"applicable": report.is_applicable, "report": report.model_dump(mode="json")}


@app.post("/conversations/{conversation_id}/schedule/apply")
async def apply_schedule(conversation_id: str, selection: GroupSelection):
    session = _session(conversation_id)
    try:
        plan = session.apply_schedule(selection.group_ids)
    except ScheduleRejectedException as e:
        raise HTTPException(status_code=409, detail=e.report.model_dump(mode="json"))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"status": "success", "checked_group_ids": plan.checked_group_ids()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)
