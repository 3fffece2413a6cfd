"""Tests for the prompt compiler, canonical serialization and input sanitising."""
import json

from aiquery import schema as s
from aiquery.cost import INSTRUCTION_OVERHEAD, estimate_tokens, resolve_tokens
from aiquery.prompts import build_instructions, compile_request, has_context
from aiquery.sanitize import sanitize_context, sanitize_task
from aiquery.serialize import CIRCULAR, canonicalize, stable_stringify


def test_primitive_instructions_demand_raw_value():
    instructions = build_instructions("Name a color", None, "string", True, "string")

    assert "No JSON wrapping" in instructions.system
    assert instructions.user == (
        "Task: Name a color\n"
        "Return ONLY a string value. No JSON, no wrapping, just the raw value."
    )


def test_structured_instructions_embed_compact_example():
    instructions = compile_request("Rate it", {"text": "great"}, s.obj(score=s.number(), tag=s.string()))

    assert "single JSON object" in instructions.system
    lines = instructions.user.split("\n")
    assert lines[0] == "Task: Rate it"
    assert lines[1] == 'Context: {"text":"great"}'
    assert lines[2] == 'Required JSON format: {"score":0,"tag":"string"}'
    assert lines[3] == "Return ONLY the JSON object matching this format."


def test_context_omitted_when_empty():
    for empty in (None, "", "   ", {}, []):
        instructions = build_instructions("t", empty, {"a": 1}, False)
        assert "Context:" not in instructions.user
    assert has_context(0) is True
    assert has_context(False) is True


def test_instructions_are_reproducible():
    first = compile_request("t", {"b": 1, "a": 2}, s.obj(x=s.string()))
    second = compile_request("t", {"a": 2, "b": 1}, s.obj(x=s.string()))
    assert first == second


# --- Canonical serialization ---

def test_stable_stringify_sorts_keys():
    assert stable_stringify({"b": 2, "a": 1}) == stable_stringify({"a": 1, "b": 2}) == '{"a":1,"b":2}'


def test_cycles_are_marked():
    node = {"name": "root"}
    node["self"] = node
    assert canonicalize(node) == {"name": "root", "self": CIRCULAR}


def test_shared_references_are_not_cycles():
    shared = {"x": 1}
    assert canonicalize({"a": shared, "b": shared}) == {"a": {"x": 1}, "b": {"x": 1}}


def test_callables_are_dropped():
    assert canonicalize({"a": 1, "fn": lambda: None}) == {"a": 1}
    assert canonicalize([1, print]) == [1, None]


def test_sets_serialize_deterministically():
    assert json.loads(stable_stringify({"tags": {"b", "a", "c"}})) == {"tags": ["a", "b", "c"]}


class Note:
    def __init__(self, text):
        self.text = text


class Marker:
    __slots__ = ()


def test_plain_objects_serialize_by_value():
    assert stable_stringify({"note": Note("x")}) == stable_stringify({"note": Note("x")}) == '{"note":{"text":"x"}}'
    assert canonicalize(Marker()) == "<Marker>"
    assert "0x" not in stable_stringify([Marker(), Note("y")])


# --- Token accounting ---

def test_estimate_tokens_heuristic():
    assert estimate_tokens("abcd") == 1 + INSTRUCTION_OVERHEAD
    assert estimate_tokens("abcde", {"a": 1}) == 2 + 2 + INSTRUCTION_OVERHEAD


def test_reported_tokens_win():
    assert resolve_tokens(17, "anything") == 17
    assert resolve_tokens(0, "anything") == 0
    assert resolve_tokens(None, "abcd") == estimate_tokens("abcd")


# --- Sanitising ---

def test_sanitize_task_strips_invisible_and_control_chars():
    raw = "  Sum\u200bmarize\x00 this\r\n\r\n\r\n\r\nplease   "
    assert sanitize_task(raw) == "Summarize this\n\nplease"


def test_sanitize_context_is_recursive_and_cycle_safe():
    context = {"text": "a\u200bb", "items": ["\ufeffc", 3]}
    context["loop"] = context
    cleaned = sanitize_context(context)

    assert cleaned["text"] == "ab"
    assert cleaned["items"] == ["c", 3]
    assert cleaned["loop"] is context
