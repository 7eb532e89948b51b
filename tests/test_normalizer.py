import json

import pytest

from conftest import PLAN
from idea_refiner.schemas.refine import PLACEHOLDER
from idea_refiner.services.normalizer import extract_json, normalize
from idea_refiner.utils.exceptions import ExtractionFailure, StructuralFailure


def test_well_formed_completion_passes_through_unchanged():
    plan = normalize(json.dumps(PLAN))
    assert plan.model_dump() == PLAN


def test_fenced_block_with_prose_is_recovered():
    text = "Sure! Here is your plan:\n```json\n" + json.dumps(PLAN, indent=2) + "\n```\nGood luck {with it}."
    first = extract_json(text)
    assert first == PLAN
    # extracting again from the same text yields an equal object
    assert extract_json(text) == first


def test_untagged_fence_is_recovered():
    text = "```\n" + json.dumps(PLAN) + "\n```"
    assert extract_json(text) == PLAN


def test_invalid_fence_falls_back_to_brace_span():
    text = "```json\nnot really json\n``` but later " + json.dumps(PLAN) + " done"
    assert extract_json(text) == PLAN


def test_first_fenced_block_wins():
    other = dict(PLAN, title="Other")
    text = "```json\n" + json.dumps(PLAN) + "\n```\n```json\n" + json.dumps(other) + "\n```"
    assert extract_json(text)["title"] == "ShelfSwap"


def test_whole_text_fallback_for_non_object_json():
    assert extract_json('  ["a", "b"]  ') == ["a", "b"]


def test_no_json_raises_extraction_failure_with_bounded_snippet():
    text = "I cannot help with that. " * 50
    with pytest.raises(ExtractionFailure) as exc:
        normalize(text)
    assert exc.value.stage == "extract"
    assert len(exc.value.raw_snippet) == 200
    assert text not in str(exc.value)


def test_truncated_json_is_an_extraction_failure():
    text = json.dumps(PLAN)[:-20]
    with pytest.raises(ExtractionFailure):
        normalize(text)


def test_empty_completion_is_an_extraction_failure():
    with pytest.raises(ExtractionFailure):
        normalize("   ")


@pytest.mark.parametrize("value", [[], "Just one feature", {"a": 1}, 7])
def test_list_fields_are_repaired_with_placeholder(value):
    data = dict(PLAN, core_features=value)
    plan = normalize(json.dumps(data))
    assert plan.core_features == [PLACEHOLDER]
    assert plan.mvp_scope == PLAN["mvp_scope"]


def test_list_items_keep_strings_and_numbers_only():
    data = dict(PLAN, suggested_tech_stack=["Python", 3, {"name": "Redis"}, None, ""])
    plan = normalize(json.dumps(data))
    assert plan.suggested_tech_stack == ["Python", "3", ""]


def test_blank_string_items_are_kept_verbatim():
    data = dict(PLAN, core_features=["Scan ISBN", "", "  "])
    plan = normalize(json.dumps(data))
    assert plan.core_features == ["Scan ISBN", "", "  "]


def test_list_of_only_non_string_items_gets_placeholder():
    data = dict(PLAN, mvp_scope=[{"phase": 1}, None])
    plan = normalize(json.dumps(data))
    assert plan.mvp_scope == [PLACEHOLDER]


def test_missing_scalar_fields_are_named():
    data = dict(PLAN)
    del data["problem"]
    data["title"] = ""
    with pytest.raises(StructuralFailure) as exc:
        normalize(json.dumps(data))
    assert exc.value.missing == ["title", "problem"]
    assert exc.value.invalid == []
    assert exc.value.stage == "validate"
    assert "title, problem" in exc.value.message


def test_null_list_field_counts_as_missing():
    data = dict(PLAN, next_steps=None)
    with pytest.raises(StructuralFailure) as exc:
        normalize(json.dumps(data))
    assert exc.value.missing == ["next_steps"]


def test_non_string_scalar_is_invalid():
    data = dict(PLAN, solution={"summary": "nested"})
    with pytest.raises(StructuralFailure) as exc:
        normalize(json.dumps(data))
    assert exc.value.missing == []
    assert exc.value.invalid == ["solution"]


def test_non_object_payload_misses_every_field():
    with pytest.raises(StructuralFailure) as exc:
        normalize("[1, 2, 3]")
    assert len(exc.value.missing) == 8


def test_unknown_fields_are_dropped():
    data = dict(PLAN, pricing="freemium")
    plan = normalize(json.dumps(data))
    assert "pricing" not in plan.model_dump()
