# schedule_chat/base_utils.py


import json
import logging
import os
import re

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "DEBUG").upper(),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("schedule_chat")

_COMMENT_OPENER = re.compile(r"/[/*]")


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2, ensure_ascii=False)
        except TypeError:
            return str(value).strip()

    # -----------------------
    # Comment stripping
    # -----------------------

    def strip_json_comments(self, text: str) -> str:
        """
        Removes // line comments and /* */ block comments from JSON-ish model output,
        leaving anything inside double-quoted string literals untouched.

        - A line comment is replaced by a single newline so line numbers in later
          diagnostics still line up.
        - A block comment is dropped; an unterminated one swallows the rest of the buffer
          (the stream will bring the rest later).
        - Text without any comment opener is returned as is.
        Never raises.
        """
        if not text or not _COMMENT_OPENER.search(text):
            return text

        out = []
        in_string = False
        escaped = False
        i = 0
        n = len(text)
        while i < n:
            ch = text[i]
            nxt = text[i + 1] if i + 1 < n else ""

            if in_string:
                out.append(ch)
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                i += 1
                continue

            if ch == '"':
                in_string = True
                out.append(ch)
                i += 1
                continue

            if ch == "/" and nxt == "/":
                newline_at = text.find("\n", i)
                out.append("\n")
                i = n if newline_at == -1 else newline_at + 1
                continue

            if ch == "/" and nxt == "*":
                close_at = text.find("*/", i + 2)
                i = n if close_at == -1 else close_at + 2
                continue

            out.append(ch)
            i += 1

        return "".join(out)
