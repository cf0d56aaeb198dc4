import pytest

from holocron.schemas.results import StoryResult, parse_story_result
from holocron.utils.errors import MalformedTerminalPayload
from holocron.utils.parsing import extract_json_block


def test_extracts_fenced_json_first():
    text = 'Here you go {"ignored": true}\n```json\n{"title": "A", "story": "B"}\n```'
    assert extract_json_block(text) == {"title": "A", "story": "B"}


def test_extracts_bare_json_with_braces_in_strings():
    text = 'Result: {"title": "The {Hidden} Base", "story": "x"} trailing'
    assert extract_json_block(text)["title"] == "The {Hidden} Base"


def test_first_of_several_blocks_wins():
    assert extract_json_block('{"a": 1} and {"b": 2}') == {"a": 1}


def test_skips_unparseable_braces():
    assert extract_json_block('{not json} then {"b": 2}') == {"b": 2}


def test_no_json_raises():
    with pytest.raises(ValueError):
        extract_json_block("no braces { here")


def test_parse_story_result_is_case_insensitive():
    result = parse_story_result('{"Title": "Jedi Night", "Story": "Once upon a time", "ImageUrl": "https://x/y.png"}')
    assert result == StoryResult(title="Jedi Night", body="Once upon a time", image_url="https://x/y.png")


def test_parse_story_result_image_is_optional():
    assert parse_story_result('{"title": "T", "story": "S"}').image_url is None


@pytest.mark.parametrize(
    "text",
    [
        "Once upon a time, with no JSON at all.",
        '["not", "an", "object"]',
        '{"title": "Missing story"}',
        '{"title": "", "story": "Empty title"}',
    ],
)
def test_parse_story_result_rejects_malformed(text):
    with pytest.raises(MalformedTerminalPayload):
        parse_story_result(text)
