import json

import pytest
from pydantic import ValidationError

from scriptkill.domain.models.script_records import (
    ClueType, ClueVisibility, ScriptDocument, strip_code_fence
)

from conftest import SCRIPT_PAYLOAD, script_json


def test_parses_writer_output():
    document = ScriptDocument.from_writer_output(script_json())

    assert document.script_name == "Death at Thornfield Manor"
    assert [c.name for c in document.characters] == ["Butler", "Heiress", "Doctor", "Gardener"]
    assert document.characters[0].age == "58"
    assert "Identity: Head of staff" in document.characters[0].description()


def test_strips_markdown_fence():
    fenced = "```json\n" + script_json() + "\n```"

    assert strip_code_fence(fenced) == script_json()
    assert ScriptDocument.from_writer_output(fenced).script_name == "Death at Thornfield Manor"


def test_plain_text_is_left_alone():
    assert strip_code_fence("  {\"a\": 1}  ") == "{\"a\": 1}"
    assert strip_code_fence(None) == ""


def test_clue_fields_are_normalised():
    clues = ScriptDocument.from_writer_output(script_json()).clues

    assert clues[0].type == ClueType.PHYSICAL
    assert clues[0].importance == 4
    assert clues[1].type == ClueType.DOCUMENT
    # Unknown values fall back to defaults
    assert clues[2].type == ClueType.PHYSICAL
    assert clues[2].visibility == ClueVisibility.PUBLIC
    assert clues[2].importance == 1


def test_scene_clues_accept_list_or_string():
    scenes = ScriptDocument.from_writer_output(script_json()).scenes

    assert scenes[0].clues == ["Torn letter"]
    assert scenes[1].clues == ["Broken lantern"]
    assert "Location: East wing" in scenes[0].full_description()


def test_invalid_json_raises_value_error():
    with pytest.raises(ValueError):
        ScriptDocument.from_writer_output("Sorry, I cannot write that.")


def test_non_object_json_raises_value_error():
    with pytest.raises(ValueError):
        ScriptDocument.from_writer_output("[1, 2, 3]")


def test_missing_name_raises_validation_error():
    payload = {k: v for k, v in SCRIPT_PAYLOAD.items() if k != "scriptName"}

    with pytest.raises(ValidationError):
        ScriptDocument.from_writer_output(json.dumps(payload))
