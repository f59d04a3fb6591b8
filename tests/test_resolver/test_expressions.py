"""Tests for expression evaluation."""
import pytest
from pydantic import SecretStr

from gamehost.resolver.errors import (
    ExpressionError,
    SecretExposure,
    TypeMismatch,
    UndeclaredReference,
)
from gamehost.resolver.expressions import OMIT, ExpressionEvaluator, union, unique_string
from gamehost.resolver.models import SecureValue


@pytest.fixture
def evaluator():
    return ExpressionEvaluator()


@pytest.fixture
def secret():
    return SecureValue(parameter="apiKey", secret=SecretStr("s3cret-value"))


def test_interpolation_with_integer_arithmetic(evaluator):
    """Arithmetic inside interpolation is evaluated before substitution."""
    assert evaluator.evaluate("${memoryInGB - 1}G", {"memoryInGB": 6}) == "5G"


def test_single_expression_keeps_native_type(evaluator):
    assert evaluator.evaluate("${cpuCores}", {"cpuCores": 4}) == 4
    assert evaluator.evaluate("${flag}", {"flag": False}) is False
    assert evaluator.evaluate("${names}", {"names": ["a", "b"]}) == ["a", "b"]


def test_string_values_are_not_coerced(evaluator):
    """A string parameter that looks like a number stays a string."""
    assert evaluator.evaluate("${version}", {"version": "1.0"}) == "1.0"


def test_dict_literals_inside_expressions(evaluator):
    assert evaluator.evaluate("${ {'a': 1} }", {}) == {"a": 1}
    assert evaluator.evaluate("${ {'small': 1, 'large': 4}[size] }G", {"size": "large"}) == "4G"


def test_division_uses_integer_semantics(evaluator):
    """Integer division truncates toward zero, like ARM div()."""
    assert evaluator.evaluate("${7 / 2}", {}) == 3
    assert evaluator.evaluate("${-7 / 2}", {}) == -3
    assert evaluator.evaluate("${memory / 2}GB", {"memory": 5}) == "2GB"


def test_division_by_zero(evaluator):
    with pytest.raises(ExpressionError):
        evaluator.evaluate("${1 / 0}", {})


def test_lowercase_transform(evaluator):
    assert evaluator.evaluate("${name | lower}", {"name": "Pixelmon-Server"}) == "pixelmon-server"


def test_union_preserves_first_seen_order():
    assert union(["ash", "misty", "ash"], ["brock", "misty"]) == ["ash", "misty", "brock"]
    assert union([], []) == []


def test_union_and_join_filters(evaluator):
    context = {"whitelist": ["Ash", "Misty"], "ops": ["Misty", "Brock"]}
    assert evaluator.evaluate("${whitelist | union(ops) | join(',')}", context) == "Ash,Misty,Brock"


def test_union_is_case_sensitive(evaluator):
    assert evaluator.evaluate("${a | union(b)}", {"a": ["Ash"], "b": ["ash"]}) == ["Ash", "ash"]


def test_unique_string_is_deterministic():
    first = unique_string("Pixelmon-Server", "eastus")
    assert first == unique_string("Pixelmon-Server", "eastus")
    assert first != unique_string("Pixelmon-Server", "westus")
    assert len(first) == 13
    assert first.isalnum() and first == first.lower()


def test_undefined_name(evaluator):
    with pytest.raises(UndeclaredReference):
        evaluator.evaluate("${missing}", {})
    with pytest.raises(UndeclaredReference):
        evaluator.evaluate("prefix-${missing}", {})


def test_syntax_error(evaluator):
    with pytest.raises(ExpressionError):
        evaluator.evaluate("${1 +}", {})


def test_type_error_becomes_type_mismatch(evaluator):
    with pytest.raises(TypeMismatch):
        evaluator.evaluate("${count - 'x'}", {"count": 1})


def test_secure_value_direct_binding(evaluator, secret):
    """A whole-string reference hands back the secure wrapper untouched."""
    assert evaluator.evaluate("${apiKey}", {"apiKey": secret}) is secret


def test_secure_value_cannot_be_interpolated(evaluator, secret):
    with pytest.raises(SecretExposure):
        evaluator.evaluate("key=${apiKey}", {"apiKey": secret})


@pytest.mark.parametrize("text", [
    "${'Bearer ' ~ apiKey}",
    "${apiKey | upper}",
    "${[apiKey] | join(',')}",
    "${apiKey | string}",
    "Bearer ${apiKey | lower}",
])
def test_secure_value_cannot_be_stringified(evaluator, secret, text):
    """Concatenation and string filters cannot turn a secret into text."""
    with pytest.raises(SecretExposure) as exc_info:
        evaluator.evaluate(text, {"apiKey": secret})
    assert exc_info.value.name == "apiKey"
    assert "s3cret-value" not in str(exc_info.value)


def test_secure_value_attributes_are_blocked(evaluator, secret):
    with pytest.raises(SecretExposure):
        evaluator.evaluate("${apiKey.secret}", {"apiKey": secret})
    with pytest.raises(SecretExposure):
        evaluator.evaluate("${apiKey.reveal()}", {"apiKey": secret})


def test_condition_must_be_boolean(evaluator):
    assert evaluator.evaluate_condition("${enabled}", {"enabled": True}) is True
    assert evaluator.evaluate_condition(False, {}) is False
    with pytest.raises(TypeMismatch):
        evaluator.evaluate_condition("${name}", {"name": "yes"})


def test_when_blocks_are_dropped(evaluator):
    tree = {
        "diagnostics": {"$when": "${enabled}", "workspace": "${name}"},
        "env": [
            {"name": "A", "value": "1"},
            {"$when": "${enabled}", "name": "B", "value": "2"},
        ],
        "keep": "${name}",
    }
    assert evaluator.evaluate_tree(tree, {"enabled": False, "name": "ws"}) == {
        "env": [{"name": "A", "value": "1"}],
        "keep": "ws",
    }
    assert evaluator.evaluate_tree(tree, {"enabled": True, "name": "ws"}) == {
        "diagnostics": {"workspace": "ws"},
        "env": [{"name": "A", "value": "1"}, {"name": "B", "value": "2"}],
        "keep": "ws",
    }


def test_top_level_when_returns_omit(evaluator):
    assert evaluator.evaluate_tree({"$when": "${False}", "a": 1}, {}) is OMIT


def test_property_loop_expands_in_order(evaluator):
    tree = [
        {"name": "first"},
        {"$forEach": "${shares}", "$each": {"name": "share${index}", "shareName": "${item}"}},
    ]
    assert evaluator.evaluate_tree(tree, {"shares": ["data", "mods"]}) == [
        {"name": "first"},
        {"name": "share0", "shareName": "data"},
        {"name": "share1", "shareName": "mods"},
    ]


def test_property_loop_requires_array(evaluator):
    with pytest.raises(TypeMismatch):
        evaluator.evaluate_tree([{"$forEach": "${name}", "$each": {}}], {"name": "data"})


def test_references(evaluator):
    names, symbols = evaluator.references("${reference('storageAccount').id ~ suffix}")
    assert names == {"reference", "suffix"}
    assert symbols == {"storageAccount"}


def test_references_ignore_globals_and_literals(evaluator):
    assert evaluator.references("${unique_string(name)}") == ({"name"}, set())
    assert evaluator.references("plain text") == (set(), set())


def test_reference_needs_literal_symbol(evaluator):
    with pytest.raises(ExpressionError):
        evaluator.references("${reference(name)}")


def test_tree_references(evaluator):
    tree = {"a": ["${x}", {"b": "${reference('res').name}"}], "$when": "${flag}"}
    assert evaluator.tree_references(tree) == ({"x", "reference", "flag"}, {"res"})
