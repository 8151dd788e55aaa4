import pytest

from tickflow.errors import PathSyntaxError
from tickflow.paths import evaluate, extract, map_result, validate_paths

DOC = {
    "store": {
        "book": [
            {"title": "Sayings", "price": 8},
            {"title": "Sword", "price": 12},
            {"title": "Moby Dick", "price": 9, "isbn": "0-553"},
        ],
        "bicycle": {"color": "red", "price": 19},
    },
    "odd key": 1,
}


def test_root_returns_whole_document():
    assert evaluate(DOC, "$") == [DOC]
    assert evaluate(DOC, None) == [DOC]


@pytest.mark.parametrize(
    "expr, expected",
    [
        ("$.store.bicycle.color", ["red"]),
        ("$['store']['bicycle']['color']", ["red"]),
        ("$['odd key']", [1]),
        ("$.store.book[0].title", ["Sayings"]),
        ("$.store.book[-1].title", ["Moby Dick"]),
        ("$.store.book[0:2].price", [8, 12]),
        ("$.store.book[::2].title", ["Sayings", "Moby Dick"]),
        ("$.store.book[*].price", [8, 12, 9]),
        ("$.store.bicycle['color','price']", ["red", 19]),
        ("$..isbn", ["0-553"]),
        ("$.store.*.color", ["red"]),
    ],
)
def test_evaluate(expr, expected):
    assert evaluate(DOC, expr) == expected


def test_recursive_descent_finds_every_match():
    assert sorted(evaluate(DOC, "$..price")) == [8, 9, 12, 19]


def test_evaluate_no_match_is_empty_list():
    assert evaluate(DOC, "$.missing.deeper") == []
    assert evaluate(DOC, "$.store.book[10]") == []


def test_extract_collapses_matches():
    assert extract(DOC, "$.missing") is None
    assert extract(DOC, "$.store.bicycle.color") == "red"
    assert extract(DOC, "$.store.book[*].price") == [8, 12, 9]
    # a single match that is itself a list is returned as that list
    assert extract({"a": [1, 2]}, "$.a") == [1, 2]


def test_evaluate_does_not_share_structure_with_input():
    doc = {"a": {"b": [1]}}
    result = extract(doc, "$.a")
    result["b"].append(2)
    assert doc == {"a": {"b": [1]}}


@pytest.mark.parametrize(
    "expr",
    [
        "store.book",
        "$.",
        "$[",
        "$['unterminated",
        "$.a b",
        "$.a[",
    ],
)
def test_malformed_expressions_raise(expr):
    with pytest.raises(PathSyntaxError) as info:
        evaluate(DOC, expr)
    assert info.value.expression == expr


def test_path_syntax_error_is_a_value_error():
    with pytest.raises(ValueError):
        validate_paths(["$.ok", "nope"])


def test_validate_paths_skips_empty_entries():
    validate_paths([None, "", "$.a[0]"])


def test_map_result_shapes():
    step_data = {"fetch": {"text": "hi"}, "shout": "HI"}
    assert map_result(step_data, None) == step_data
    assert map_result(step_data, "$.shout") == "HI"
    assert map_result(step_data, {"loud": "$.shout", "quiet": "$.fetch.text", "none": "$.x"}) == {
        "loud": "HI",
        "quiet": "hi",
        "none": None,
    }
