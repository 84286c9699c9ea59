# tests/test_field_extractor.py
"""Tests for response field extraction."""
import pytest

from field_extractor import MISSING, extract_field, is_missing, normalize_path


ROLES = [{"id": 42, "name": "admin"}, {"id": 43, "name": "viewer"}]


def test_index_path_on_list():
    assert extract_field(ROLES, "0.id") == 42
    assert extract_field(ROLES, "1.name") == "viewer"


def test_bracket_index_is_normalized():
    assert normalize_path("[0].id") == "0.id"
    assert normalize_path("items[2].name") == "items.2.name"
    assert extract_field(ROLES, "[0].id") == 42


def test_nested_dict_path():
    response = {"data": {"items": [{"name": "a"}, {"name": "b"}, {"name": "c"}]}}
    assert extract_field(response, "data.items.2.name") == "c"


@pytest.mark.parametrize("path", ["5.id", "0.missing", "id.deeper", "name.0", ""])
def test_missing_paths_return_sentinel(path):
    assert is_missing(extract_field(ROLES if path != "id.deeper" else {"id": 3}, path))


def test_null_is_a_real_value():
    value = extract_field({"parent_id": None}, "parent_id")
    assert value is None
    assert not is_missing(value)


def test_missing_sentinel_is_falsy_singleton():
    assert not MISSING
    assert repr(MISSING) == "MISSING"
    assert extract_field({}, "a") is MISSING


def test_never_raises_on_odd_input():
    assert is_missing(extract_field("plain text", "a.b"))
    assert is_missing(extract_field(None, "0"))
    assert is_missing(extract_field(ROLES, None))


class TestFilterExtraction:
    def test_filter_on_top_level_list(self):
        response = [{"id": 1, "status": "active"}, {"id": 2, "status": "inactive"}]
        assert extract_field(response, "[status=active].id") == 1

    def test_filter_is_case_insensitive(self):
        response = [{"id": 1, "name": "Mauricio Henrique"}]
        assert extract_field(response, "[name=mauricio henrique].id") == 1

    def test_filter_searches_container_fields(self):
        for container in ("data", "items", "results", "records"):
            response = {container: [{"id": 5, "kind": "x"}]}
            assert extract_field(response, "[kind=x].id") == 5

    def test_filter_multiple_matches_returns_list(self):
        response = {"items": [{"id": 1, "tag": "a"}, {"id": 2, "tag": "a"}, {"id": 3, "tag": "b"}]}
        assert extract_field(response, "[tag=a].id") == [1, 2]

    def test_filter_without_path_returns_element(self):
        response = [{"id": 1, "tag": "a"}]
        assert extract_field(response, "[tag=a]") == {"id": 1, "tag": "a"}

    def test_filter_matches_booleans_and_numbers(self):
        response = [{"id": 1, "enabled": False}, {"id": 2, "enabled": True, "rank": 3.0}]
        assert extract_field(response, "[enabled=true].id") == 2
        assert extract_field(response, "[rank=3].id") == 2

    def test_filter_no_match_is_missing(self):
        assert is_missing(extract_field([{"id": 1, "status": "x"}], "[status=active].id"))
        assert is_missing(extract_field({"nothing": "here"}, "[status=active].id"))
