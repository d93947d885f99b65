# schedule_chat/reconciler.py

import logging
from typing import Optional

from schedule_chat.entities import (
    Catalog,
    DecodedTurn,
    DecodeKind,
    DecodeOutcome,
    TurnStatus,
)
from schedule_chat.reply_decoder import ReplyDecoder

logger = logging.getLogger("schedule_chat")

DEFAULT_SUGGESTIONS = [
    "Unikaj zajęć przed 10:00",
    "Chciałbym wolne piątki",
    "Preferuj wysokie oceny prowadzących",
    "Zamień laboratorium na późniejszą grupę",
]

_DECODED_KINDS = (DecodeKind.STRUCTURED, DecodeKind.REPLY_ONLY)


class MessageReconciler:
    """
    Per-conversation decoded state.

    - update() re-decodes the whole accumulated text of an in-flight turn on every chunk.
    - The call with is_final=True freezes the turn; later calls return the cached turn.
    - The active suggestion list is only ever written when a turn freezes.
    """

    def __init__(self, catalog: Optional[Catalog] = None, default_suggestions: Optional[list[str]] = None):
        self.catalog = catalog
        self.decoder = ReplyDecoder()
        # turn_id -> DecodedTurn, insertion ordered
        self._turns: dict[str, DecodedTurn] = {}
        if default_suggestions is None:
            default_suggestions = DEFAULT_SUGGESTIONS
        self._active_suggestions: list[str] = list(default_suggestions)

    @property
    def active_suggestions(self) -> list[str]:
        return list(self._active_suggestions)

    def get(self, turn_id: str) -> Optional[DecodedTurn]:
        return self._turns.get(str(turn_id))

    def turns(self) -> list[DecodedTurn]:
        return list(self._turns.values())

    def clear(self) -> None:
        self._turns.clear()

    def update(self, turn_id: str, raw_text: str, is_final: bool = False) -> DecodedTurn:
        tid = str(turn_id)
        previous = self._turns.get(tid)
        if previous is not None and previous.complete:
            return previous

        outcome = self.decoder.parse_structured(raw_text or "")
        turn = self._reconcile(tid, previous, outcome, is_final)
        self._turns[tid] = turn

        logger.debug(
            f"update turn={tid} final={is_final} kind={outcome.kind.value} "
            f"status={turn.status.value} chars={len(raw_text or '')}"
        )

        if is_final:
            self._publish_suggestions(turn)
        return turn

    # -----------------------
    # Internals
    # -----------------------

    def _reconcile(
        self,
        turn_id: str,
        previous: Optional[DecodedTurn],
        outcome: DecodeOutcome,
        is_final: bool,
    ) -> DecodedTurn:
        kind, value = outcome.kind, outcome.value

        # a malformed fragment never wipes out what was already decoded for this turn
        if (
            previous is not None
            and previous.kind in _DECODED_KINDS
            and kind not in _DECODED_KINDS
        ):
            kind, value = previous.kind, previous.value

        if kind == DecodeKind.EMPTY:
            status = TurnStatus.EMPTY
        elif kind == DecodeKind.STRUCTURED:
            status = TurnStatus.FINAL if is_final else TurnStatus.PARTIAL
        else:
            status = TurnStatus.REPLY_ONLY_FALLBACK

        schedule_groups, unknown = [], []
        if value is not None and value.schedule is not None:
            schedule_groups, unknown = self._resolve_schedule_groups(value.schedule.group_ids)

        return DecodedTurn(
            turn_id=turn_id,
            status=status,
            kind=kind,
            value=value,
            complete=is_final,
            schedule_groups=schedule_groups,
            unknown_group_ids=unknown,
        )

    def _resolve_schedule_groups(self, group_ids: list[str]):
        if self.catalog is None:
            return [], list(group_ids)
        groups, unknown = [], []
        for gid in group_ids:
            group = self.catalog.find_group(gid)
            if group is None:
                unknown.append(gid)
            else:
                groups.append(group)
        return groups, unknown

    def _publish_suggestions(self, turn: DecodedTurn) -> None:
        # an empty or missing list clears the previous one
        self._active_suggestions = turn.suggestions
        logger.debug(f"turn={turn.turn_id} finalized; active suggestions: {self._active_suggestions}")
