# schedule_chat/reply_decoder.py

import json
import logging
import re
from typing import Any, Optional

from json_repair import repair_json
from pydantic import ValidationError

from schedule_chat.base_utils import BaseUtils
from schedule_chat.entities import DecodeKind, DecodeOutcome, StructuredReply

logger = logging.getLogger("schedule_chat")

_raw_decoder = json.JSONDecoder()

_WHITESPACE = " \t\r\n"
# \uD800-\uDBFF: first half of a surrogate pair, useless without the second
_HIGH_SURROGATE_TAIL = re.compile(r"\\u[dD][89abAB][0-9a-fA-F]{2}$")


class ReplyDecoder(BaseUtils):
    """
    Turns the (possibly truncated, possibly comment-polluted) text of one assistant
    turn into a StructuredReply.

        outcome = ReplyDecoder().parse_structured(accumulated_text)

    Pure: the same text always yields the same outcome, and nothing in here raises
    on model output.
    """

    # -----------------------
    # Partial decoding
    # -----------------------

    def decode_partial(self, text: str) -> Any:
        """
        Returns the deepest JSON value obtainable from a prefix of a JSON document,
        starting at the first '{'. None means "no structured value".

        - A complete first object is decoded exactly; whatever follows it (a second
          object, trailing prose, a closing code fence) is ignored.
        - A truncated object keeps the members completed so far. An open string value
          ends at the cut; a member whose key or value is still arriving is left out.
        - Anything the closer cannot make sense of goes to json_repair.
        """
        if not text or "{" not in text:
            return None

        body = text[text.index("{"):]
        try:
            value, _ = _raw_decoder.raw_decode(body)
            return value
        except ValueError:
            pass

        closed = self._close_truncated(body)
        if closed is not None:
            try:
                return json.loads(closed)
            except ValueError:
                body = closed

        try:
            value = repair_json(body, return_objects=True)
        except Exception as e:
            logger.warning(f"decode_partial: could not repair model output: {e}")
            return None

        if isinstance(value, list):
            # several top-level values: keep the first object
            value = next((v for v in value if isinstance(v, dict)), None)
        if value == "" or value is None:
            return None
        return value

    def _close_truncated(self, body: str) -> Optional[str]:
        """
        Cuts a JSON prefix back to its last complete member and closes what is still open:

            '{"reply": "Oto", "schedule": '   -> '{"reply": "Oto"}'
            '{"reply": "say \\'               -> '{"reply": "say "}'
            '{"a": ["x", "y'                  -> '{"a": ["x", "y"]}'

        When the first object is already closed the text up to it is returned as is.
        Returns None on anything that does not read as JSON (single quotes, bare keys ...).
        """
        # one frame per open container: [opener, state, start of the member in progress]
        # object states: key -> colon -> value -> in_value -> after ; arrays skip key/colon
        stack: list[list] = []
        in_string = False
        escape = False
        unicode_at = -1
        bare = False

        for i, ch in enumerate(body):
            if in_string:
                if escape:
                    escape = False
                    unicode_at = i - 1 if ch == "u" else -1
                elif unicode_at >= 0 and i - unicode_at < 6:
                    continue
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
                    unicode_at = -1
                    frame = stack[-1]
                    frame[1] = "colon" if frame[1] == "key" else "after"
                continue

            if bare:
                if ch not in _WHITESPACE and ch not in ",}]":
                    continue
                bare = False
                stack[-1][1] = "after"

            if ch in _WHITESPACE:
                continue
            if not stack:
                if ch != "{":
                    return None
                stack.append(["{", "key", i + 1])
                continue

            frame = stack[-1]
            opener, state = frame[0], frame[1]
            if ch == '"':
                if state not in ("key", "value"):
                    return None
                if state == "value":
                    frame[1] = "in_value"
                in_string = True
            elif ch in "{[":
                if state != "value":
                    return None
                frame[1] = "in_value"
                stack.append([ch, "key" if ch == "{" else "value", i + 1])
            elif ch in "}]":
                if ch != ("}" if opener == "{" else "]") or state in ("colon", "in_value"):
                    return None
                if opener == "{" and state == "value":
                    return None
                stack.pop()
                if not stack:
                    return body[:i + 1]
                stack[-1][1] = "after"
            elif ch == ":":
                if opener != "{" or state != "colon":
                    return None
                frame[1] = "value"
            elif ch == ",":
                if state != "after":
                    return None
                frame[1] = "key" if opener == "{" else "value"
                frame[2] = i
            else:
                if state != "value":
                    return None
                frame[1] = "in_value"
                bare = True

        if not stack:
            return None

        opener, state, member_start = stack[-1]
        if in_string and state == "in_value":
            cut = len(body)
            if escape:
                cut -= 1
            elif unicode_at >= 0 and cut - unicode_at < 6:
                cut = unicode_at
            tail = _HIGH_SURROGATE_TAIL.search(body, 0, cut)
            if tail is not None and self._starts_escape(body, tail.start()):
                cut = tail.start()
            head = body[:cut] + '"'
        elif in_string or bare or state != "after":
            # key without a value yet, a literal that may still grow, or a dangling comma
            head = body[:member_start]
        else:
            head = body

        return head + "".join("}" if f[0] == "{" else "]" for f in reversed(stack))

    @staticmethod
    def _starts_escape(text: str, pos: int) -> bool:
        # an odd run of backslashes ending at pos means text[pos] opens an escape
        run = len(text[:pos + 1]) - len(text[:pos + 1].rstrip("\\"))
        return run % 2 == 1

    # -----------------------
    # Validation & fallback
    # -----------------------

    def validate_candidate(self, candidate: Any, raw_text: str) -> DecodeOutcome:
        """
        Maps a decoded candidate onto the StructuredReply shape.

        1) candidate validates            -> STRUCTURED (absent fields stay None)
        2) object with a 'reply' key      -> REPLY_ONLY, schedule dropped, no suggestions
        3) anything else                  -> RAW_TEXT, the whole text is the reply
        """
        if isinstance(candidate, dict):
            try:
                value = StructuredReply.model_validate(candidate)
                return DecodeOutcome(kind=DecodeKind.STRUCTURED, value=value)
            except ValidationError as e:
                logger.debug(f"validate_candidate: strict validation failed ({e.error_count()} errors)")

            if "reply" in candidate:
                return DecodeOutcome(
                    kind=DecodeKind.REPLY_ONLY,
                    value=StructuredReply(
                        reply=self._coerce_field_to_str(candidate.get("reply")),
                        suggestions=[],
                    ),
                )

        return DecodeOutcome(kind=DecodeKind.RAW_TEXT, value=StructuredReply(reply=raw_text))

    def parse_structured(self, text: str) -> DecodeOutcome:
        """
        Full pipeline for one accumulated buffer: strip comments -> partial decode -> validate.
        """
        if not text or not text.strip():
            return DecodeOutcome(kind=DecodeKind.EMPTY)

        if "{" not in text:
            return DecodeOutcome(kind=DecodeKind.RAW_TEXT, value=StructuredReply(reply=text))

        candidate = self.decode_partial(self.strip_json_comments(text))
        return self.validate_candidate(candidate, text)
