# schedule_chat/conversation_cache.py

import logging
import os
import threading
import time
import traceback
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from langchain_core.chat_history import InMemoryChatMessageHistory
from langchain_core.messages import AIMessage, HumanMessage

from schedule_chat.entities import Catalog, ConflictReport, DecodedTurn
from schedule_chat.reconciler import MessageReconciler
from schedule_chat.schedule_resolver import apply_schedule, resolve

load_dotenv()
CONVERSATION_TTL_SECONDS = int(os.getenv("CONVERSATION_TTL_SECONDS", str(24 * 3600)))
CONVERSATION_MAX_TOKENS = int(os.getenv("CONVERSATION_MAX_TOKENS", "8000"))

TRANSPORT_ERROR_NOTICE = "Wystąpił błąd podczas komunikacji z AI."

logger = logging.getLogger("schedule_chat")


def _approx_tokens(message) -> int:
    # chars/4, close enough for a transcript cap
    return max(1, len(str(message.content or "")) // 4)


class ConversationSession:
    """
    Everything one conversation owns: the read-only catalog, the reconciler with its
    active suggestions, the chat transcript and the raw text buffered per turn.
    """

    def __init__(self, conversation_id: str, catalog: Catalog, default_suggestions: Optional[list[str]] = None):
        self.conversation_id = conversation_id
        self.catalog = catalog
        self.plan = catalog
        self.reconciler = MessageReconciler(catalog=catalog, default_suggestions=default_suggestions)
        self.history = InMemoryChatMessageHistory()
        self.last_notice: Optional[str] = None
        self._buffers: dict[str, str] = {}

    @property
    def active_suggestions(self) -> list[str]:
        return self.reconciler.active_suggestions

    def add_user_message(self, text: str) -> None:
        self.last_notice = None
        self.history.add_message(HumanMessage(content=text))

    def feed_chunk(self, turn_id: str, chunk: str, is_final: bool = False) -> DecodedTurn:
        tid = str(turn_id)
        cached = self.reconciler.get(tid)
        if cached is not None and cached.complete:
            return cached

        text = self._buffers.get(tid, "") + (chunk or "")
        self._buffers[tid] = text
        turn = self.reconciler.update(tid, text, is_final=is_final)
        if is_final:
            self.history.add_message(AIMessage(content=text))
            del self._buffers[tid]
        return turn

    def abort_turn(self, turn_id: str, reason: Optional[str] = None) -> Optional[DecodedTurn]:
        """
        Transport gave up mid-turn: keep whatever was decoded so far, do not freeze the
        turn and do not touch the suggestions. The notice is meant for the user.
        The raw text is dropped, so chunks arriving later for the same turn start over.
        """
        tid = str(turn_id)
        logger.warning(f"conversation={self.conversation_id} turn={tid} aborted: {reason or 'no reason given'}")
        self.last_notice = TRANSPORT_ERROR_NOTICE
        self._buffers.pop(tid, None)
        return self.reconciler.get(tid)

    async def consume_stream(self, turn_id: str, chunks: AsyncIterator[str]) -> Optional[DecodedTurn]:
        """
        Feed an async chunk stream into the turn; finalize when it ends.
        A failing stream is turned into abort_turn() instead of propagating.
        """
        tid = str(turn_id)
        try:
            async for chunk in chunks:
                self.feed_chunk(tid, chunk)
        except Exception as e:
            logger.debug(traceback.format_exc())
            return self.abort_turn(tid, reason=str(e))
        return self.feed_chunk(tid, "", is_final=True)

    def resolve(self, group_ids: list[str]) -> ConflictReport:
        return resolve(group_ids, self.catalog)

    def apply_schedule(self, group_ids: list[str]) -> Catalog:
        self.plan = apply_schedule(group_ids, self.plan)
        return self.plan

    def apply_turn_schedule(self, turn_id: str) -> Catalog:
        """
        Apply the schedule proposed by a finished turn. In-flight turns are refused.
        """
        turn = self.reconciler.get(str(turn_id))
        if turn is None:
            raise KeyError(f"Unknown turn: {turn_id}")
        if not turn.complete or turn.schedule is None:
            raise ValueError(f"Turn {turn_id} has no finished schedule to apply")
        return self.apply_schedule(turn.schedule.group_ids)

    def trim_transcript(self, max_tokens: int) -> int:
        """
        Forget the oldest transcript messages until the rest fits in max_tokens.
        Returns how many messages were forgotten.
        """
        messages = list(self.history.messages)
        sizes = [_approx_tokens(m) for m in messages]
        overflow = sum(sizes) - max_tokens
        dropped = 0
        while overflow > 0 and dropped < len(messages):
            overflow -= sizes[dropped]
            dropped += 1
        if dropped:
            self.history.messages = messages[dropped:]
            logger.debug(f"conversation={self.conversation_id}: {dropped} old messages over the token cap")
        return dropped


class ConversationCache:
    """
    In-memory, per-conversation sessions with:
    - sliding TTL (expires ttl_seconds after last touch)
    - approximate token cap on the transcript (chars/4 heuristic)
    - thread-safe operations
    """

    def __init__(self, ttl_seconds: int, max_tokens: int):
        self.ttl_seconds = ttl_seconds
        self.max_tokens = max_tokens
        self._lock = threading.Lock()
        # conversation_id -> {"session": ConversationSession, "expires_at": float}
        self._items: dict[str, dict[str, object]] = {}

    def _get_unlocked(self, conversation_id: str) -> Optional[ConversationSession]:
        now = time.time()
        item = self._items.get(conversation_id)
        if item is None:
            return None
        if float(item["expires_at"]) > now:
            item["expires_at"] = now + self.ttl_seconds
            return item["session"]  # type: ignore[return-value]
        # expired -> drop
        del self._items[conversation_id]
        return None

    def open(self, conversation_id: str, catalog: Catalog, default_suggestions: Optional[list[str]] = None) -> ConversationSession:
        """
        Start (or restart) a conversation over the given catalog.
        """
        cid = str(conversation_id)
        session = ConversationSession(cid, catalog, default_suggestions=default_suggestions)
        with self._lock:
            self._items[cid] = {"session": session, "expires_at": time.time() + self.ttl_seconds}
        return session

    def get(self, conversation_id: str) -> ConversationSession:
        with self._lock:
            session = self._get_unlocked(str(conversation_id))
        if session is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        return session

    def discard(self, conversation_id: str) -> bool:
        with self._lock:
            item = self._items.pop(str(conversation_id), None)
        if item is not None:
            item["session"].reconciler.clear()  # type: ignore[union-attr]
        return item is not None

    def snapshot(self, conversation_id: str) -> list:
        """
        Returns a COPY of the conversation transcript for the next model call.
        Also prunes to cap (under lock), and touches TTL.
        """
        cid = str(conversation_id)
        with self._lock:
            session = self._get_unlocked(cid)
            if session is None:
                raise KeyError(f"Unknown conversation: {conversation_id}")
            session.trim_transcript(self.max_tokens)
            return list(session.history.messages)

    def sweep_expired(self) -> int:
        """
        Drop every conversation whose TTL ran out; returns how many went.
        """
        now = time.time()
        with self._lock:
            expired = [cid for cid, item in self._items.items() if float(item["expires_at"]) <= now]
            sessions = [self._items.pop(cid)["session"] for cid in expired]
        for session in sessions:
            session.reconciler.clear()  # type: ignore[union-attr]
        if expired:
            logger.info(f"sweep_expired: {len(expired)} idle conversations dropped: {', '.join(expired)}")
        return len(expired)


GLOBAL_CONVERSATION_CACHE = ConversationCache(
    ttl_seconds=CONVERSATION_TTL_SECONDS,
    max_tokens=CONVERSATION_MAX_TOKENS,
)
