import pytest

from schedule_chat import reply_decoder
from schedule_chat.entities import DecodeKind
from schedule_chat.reply_decoder import ReplyDecoder


@pytest.fixture
def decoder():
    return ReplyDecoder()


COMPLETE = (
    '{"reply": "Oto plan", '
    '"schedule": {"rationale": "Bez konfliktów", "groupIds": ["G1", "G2"]}, '
    '"suggestions": ["Pokaż alternatywy", "Usuń fizykę"]}'
)


def test_complete_object_is_structured(decoder):
    outcome = decoder.parse_structured(COMPLETE)
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.reply == "Oto plan"
    assert outcome.value.schedule.rationale == "Bez konfliktów"
    assert outcome.value.schedule.group_ids == ["G1", "G2"]
    assert outcome.value.suggestions == ["Pokaż alternatywy", "Usuń fizykę"]


def test_absent_fields_stay_absent(decoder):
    outcome = decoder.parse_structured('{"reply": "Jakie masz preferencje?"}')
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.schedule is None
    assert outcome.value.suggestions is None


def test_explicit_null_falls_back_to_reply_only(decoder):
    outcome = decoder.parse_structured('{"reply": "x", "schedule": null, "suggestions": ["A"]}')
    assert outcome.kind == DecodeKind.REPLY_ONLY
    assert outcome.value.reply == "x"
    assert outcome.value.schedule is None
    assert outcome.value.suggestions == []

    outcome = decoder.parse_structured('{"reply": "x", "suggestions": null}')
    assert outcome.kind == DecodeKind.REPLY_ONLY


def test_unknown_keys_are_ignored(decoder):
    outcome = decoder.parse_structured('{"reply": "ok", "confidence": 0.7}')
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.reply == "ok"


def test_missing_closing_brace_keeps_completed_members(decoder):
    outcome = decoder.parse_structured('{"reply": "Oto plan", "suggestions": ["Tak"]')
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.reply == "Oto plan"
    assert outcome.value.suggestions == ["Tak"]


def test_string_cut_mid_literal_is_kept_up_to_the_cut(decoder):
    outcome = decoder.parse_structured('{"reply": "Oto pl')
    assert outcome.value.reply == "Oto pl"


def test_truncated_key_does_not_invent_a_schedule(decoder):
    outcome = decoder.parse_structured('{"reply": "Oto plan", "sched')
    assert outcome.value.reply == "Oto plan"
    assert outcome.value.schedule is None


def test_truncated_group_list_keeps_finished_ids(decoder):
    candidate = decoder.decode_partial(
        '{"reply": "x", "schedule": {"rationale": "ok", "groupIds": ["G1", "G2"'
    )
    assert candidate["schedule"]["groupIds"] == ["G1", "G2"]


def test_text_without_brace_is_plain_prose(decoder):
    text = "Cześć! Jak mogę pomóc?"
    outcome = decoder.parse_structured(text)
    assert outcome.kind == DecodeKind.RAW_TEXT
    assert outcome.value.reply == text
    assert decoder.decode_partial(text) is None


def test_empty_text(decoder):
    outcome = decoder.parse_structured("   ")
    assert outcome.kind == DecodeKind.EMPTY
    assert outcome.value is None


def test_leading_prose_and_code_fence_are_skipped(decoder):
    outcome = decoder.parse_structured('Proszę:\n```json\n{"reply": "ok"}\n```')
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.reply == "ok"


def test_comments_are_stripped_before_decoding(decoder):
    text = '{"reply": "ok", // the plan follows\n"suggestions": ["a" /* first */]}'
    outcome = decoder.parse_structured(text)
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.suggestions == ["a"]


def test_too_many_suggestions_falls_back_to_reply_only(decoder):
    text = '{"reply": "ok", "suggestions": ["a", "b", "c", "d", "e"]}'
    outcome = decoder.parse_structured(text)
    assert outcome.kind == DecodeKind.REPLY_ONLY
    assert outcome.value.reply == "ok"
    assert outcome.value.schedule is None
    assert outcome.value.suggestions == []


def test_empty_group_list_falls_back_to_reply_only(decoder):
    text = '{"reply": "ok", "schedule": {"rationale": "brak", "groupIds": []}}'
    outcome = decoder.parse_structured(text)
    assert outcome.kind == DecodeKind.REPLY_ONLY
    assert outcome.value.schedule is None


def test_non_string_reply_is_coerced(decoder):
    outcome = decoder.parse_structured('{"reply": 42}')
    assert outcome.kind == DecodeKind.REPLY_ONLY
    assert outcome.value.reply == "42"


def test_object_without_reply_uses_whole_text(decoder):
    text = '{"plan": "G1"}'
    outcome = decoder.parse_structured(text)
    assert outcome.kind == DecodeKind.RAW_TEXT
    assert outcome.value.reply == text


def test_first_of_several_objects_wins(decoder):
    # Ambiguous input: only the first top-level object is considered.
    outcome = decoder.parse_structured('{"reply": "first"}\n{"reply": "second"}')
    assert outcome.value.reply == "first"


def test_repair_failure_yields_no_structured_value(decoder, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(reply_decoder, "repair_json", boom)
    assert decoder.decode_partial("{'reply': 'cut") is None

    outcome = decoder.parse_structured("{'reply': 'cut")
    assert outcome.kind == DecodeKind.RAW_TEXT
    assert outcome.value.reply == "{'reply': 'cut"


def test_same_text_same_outcome(decoder):
    text = '{"reply": "Oto plan", "schedule": {"rationale": "ok", "groupIds": ["G1"'
    assert decoder.parse_structured(text) == decoder.parse_structured(text)


@pytest.mark.parametrize("text", [
    '{"reply": "Oto plan", "suggestions": ',
    '{"reply": "Oto plan", "suggestions":',
    '{"reply": "Oto plan", "suggestions"',
    '{"reply": "Oto plan", "sugg',
    '{"reply": "Oto plan", ',
    '{"reply": "Oto plan", "schedule": ',
])
def test_member_without_value_is_left_out(decoder, text):
    assert decoder.decode_partial(text) == {"reply": "Oto plan"}
    outcome = decoder.parse_structured(text)
    assert outcome.kind == DecodeKind.STRUCTURED
    assert outcome.value.schedule is None
    assert outcome.value.suggestions is None


def test_literal_still_arriving_is_left_out(decoder):
    assert decoder.decode_partial('{"reply": "x", "flag": tr') == {"reply": "x"}
    assert decoder.decode_partial('{"reply": "x", "n": 12') == {"reply": "x"}
    assert decoder.decode_partial('{"reply": "x", "n": 12, "m": true}') == {"reply": "x", "n": 12, "m": True}


def test_dangling_escape_is_not_part_of_the_reply(decoder):
    assert decoder.parse_structured('{"reply": "say \\').value.reply == "say "
    assert decoder.parse_structured('{"reply": "za\\u00').value.reply == "za"
    assert decoder.parse_structured('{"reply": "za\\u00f3').value.reply == "zaó"
    assert decoder.parse_structured('{"reply": "a\\\\').value.reply == "a\\"


def test_half_surrogate_pair_is_held_back(decoder):
    assert decoder.parse_structured('{"reply": "ok \\ud83d').value.reply == "ok "
    assert decoder.parse_structured('{"reply": "ok \\ud83d\\ude00').value.reply == "ok \U0001F600"


def test_reply_streamed_char_by_char_only_grows(decoder):
    text = '{"reply": "say \\"hi\\" \\u017cyczliwie \\ud83d\\ude00\\n", "suggestions": ["A"]}'
    final = decoder.parse_structured(text).value.reply
    assert final == 'say "hi" życzliwie \U0001F600\n'

    structured = 0
    for end in range(1, len(text) + 1):
        outcome = decoder.parse_structured(text[:end])
        if outcome.kind == DecodeKind.STRUCTURED:
            structured += 1
            assert final.startswith(outcome.value.reply), text[:end]
    assert structured > len(text) // 2
