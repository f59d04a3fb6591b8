"""Evaluation of ``${...}`` expressions embedded in template values."""
import base64
import hashlib
from typing import Any, Dict, Iterable, List, Set, Tuple

from jinja2 import StrictUndefined, Undefined, meta, nodes
from jinja2.exceptions import TemplateError, TemplateSyntaxError, UndefinedError
from jinja2.sandbox import SandboxedEnvironment

from .errors import (
    ExpressionError,
    ResolutionError,
    SecretExposure,
    TypeMismatch,
    UndeclaredReference,
)
from .models import SecureValue

INTERPOLATION_START = "${"
INTERPOLATION_END = "}"
WHEN_KEY = "$when"
LOOP_KEY = "$forEach"
LOOP_BODY_KEY = "$each"
REFERENCE_FUNCTION = "reference"


class _Omit:
    """Marker for a ``$when`` block whose condition is false."""

    def __repr__(self) -> str:
        return "OMIT"


OMIT = _Omit()


def union(value: Iterable, *others: Iterable) -> List:
    """Concatenate sequences, dropping repeated values, first occurrence wins."""
    seen = []
    for sequence in (value, *others):
        for item in sequence or []:
            if item not in seen:
                seen.append(item)
    return seen


def unique_string(*parts: Any) -> str:
    """Deterministic 13 character lowercase hash of the given values."""
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).digest()
    return base64.b32encode(digest).decode("ascii").lower()[:13]


def _finalize(value: Any) -> Any:
    if isinstance(value, SecureValue):
        raise SecretExposure(
            f"secure parameter '{value.parameter}' cannot be interpolated into a string",
            name=value.parameter,
        )
    return value


class ExpressionEnvironment(SandboxedEnvironment):
    """Sandboxed Jinja environment with ``${ }`` delimiters and integer division."""

    intercepted_binops = frozenset(["/"])

    def call_binop(self, context, operator, left, right):
        if operator == "/" and _is_int(left) and _is_int(right):
            if right == 0:
                raise ExpressionError("integer division by zero")
            quotient = abs(left) // abs(right)
            return quotient if (left >= 0) == (right > 0) else -quotient
        return super().call_binop(context, operator, left, right)

    def getattr(self, obj, attribute):
        if isinstance(obj, SecureValue):
            raise SecretExposure(f"secure parameter '{obj.parameter}' cannot be inspected", name=obj.parameter)
        return super().getattr(obj, attribute)

    def getitem(self, obj, argument):
        if isinstance(obj, SecureValue):
            raise SecretExposure(f"secure parameter '{obj.parameter}' cannot be inspected", name=obj.parameter)
        return super().getitem(obj, argument)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ExpressionEvaluator:
    """Parses, analyses and evaluates template expressions."""

    def __init__(self):
        self.env = ExpressionEnvironment(
            variable_start_string=INTERPOLATION_START,
            variable_end_string=INTERPOLATION_END,
            block_start_string="${%",
            block_end_string="%}",
            comment_start_string="${#",
            comment_end_string="#}",
            undefined=StrictUndefined,
            finalize=_finalize,
            keep_trailing_newline=True,
            autoescape=False,
        )
        self.env.filters["union"] = union
        self.env.globals["unique_string"] = unique_string
        self._compiled: Dict[str, Any] = {}
        self._references: Dict[str, Tuple[Set[str], Set[str]]] = {}

    @staticmethod
    def is_expression(value: Any) -> bool:
        return isinstance(value, str) and INTERPOLATION_START in value

    def evaluate(self, text: str, context: Dict[str, Any]) -> Any:
        """Evaluate one template string.

        A string made of exactly one ``${expr}`` keeps the native type of the
        result; anything else renders to a string.

        The closing ``}`` only ends an expression once brackets inside it
        are balanced, so dict literals such as ``${ {'a': 1} }`` work.
        """
        if not self.is_expression(text):
            return text
        try:
            compiled = self._compile(text)
            if isinstance(compiled, tuple):
                result = compiled[1](**context)
            else:
                return compiled.render(**context)
        except ResolutionError:
            raise
        except UndefinedError as e:
            raise UndeclaredReference(f"{text!r}: {e.message}") from e
        except TemplateError as e:
            raise ExpressionError(f"invalid expression {text!r}: {e.message}") from e
        except ZeroDivisionError as e:
            raise ExpressionError(f"expression {text!r} divides by zero") from e
        except (TypeError, ValueError) as e:
            raise TypeMismatch(f"expression {text!r} failed: {e}") from e
        if isinstance(result, Undefined):
            raise UndeclaredReference(f"{text!r} evaluates to an undefined value")
        return result

    def evaluate_condition(self, value: Any, context: Dict[str, Any]) -> bool:
        result = self.evaluate(value, context) if isinstance(value, str) else value
        if not isinstance(result, bool):
            raise TypeMismatch(f"condition {value!r} must evaluate to a boolean, got {type(result).__name__}")
        return result

    def evaluate_tree(self, value: Any, context: Dict[str, Any]) -> Any:
        """Evaluate every expression inside nested dicts and lists.

        Mappings carrying a ``$when`` key are dropped when it is false; list
        elements of the form ``{$forEach: ..., $each: ...}`` expand to one
        entry per item with ``item`` and ``index`` bound.
        """
        if isinstance(value, str):
            return self.evaluate(value, context)
        if isinstance(value, dict):
            if WHEN_KEY in value:
                if not self.evaluate_condition(value[WHEN_KEY], context):
                    return OMIT
                value = {k: v for k, v in value.items() if k != WHEN_KEY}
            result = {}
            for key, item in value.items():
                resolved = self.evaluate_tree(item, context)
                if resolved is not OMIT:
                    result[key] = resolved
            return result
        if isinstance(value, list):
            result = []
            for element in value:
                if isinstance(element, dict) and LOOP_KEY in element:
                    result.extend(self._expand_loop(element, context))
                    continue
                resolved = self.evaluate_tree(element, context)
                if resolved is not OMIT:
                    result.append(resolved)
            return result
        return value

    def _expand_loop(self, element: Dict[str, Any], context: Dict[str, Any]) -> List[Any]:
        """Expand a ``{$forEach: ..., $each: ...}`` list element, one entry per item."""
        if set(element) != {LOOP_KEY, LOOP_BODY_KEY}:
            raise ExpressionError(f"a {LOOP_KEY} element needs exactly the keys {LOOP_KEY} and {LOOP_BODY_KEY}")
        items = self.evaluate(element[LOOP_KEY], context)
        if not isinstance(items, list):
            raise TypeMismatch(f"{LOOP_KEY} {element[LOOP_KEY]!r} must evaluate to an array")
        expanded = []
        for index, item in enumerate(items):
            resolved = self.evaluate_tree(element[LOOP_BODY_KEY], {**context, "item": item, "index": index})
            if resolved is not OMIT:
                expanded.append(resolved)
        return expanded

    def references(self, text: str) -> Tuple[Set[str], Set[str]]:
        """Names and ``reference()`` symbols used by a template string."""
        if not self.is_expression(text):
            return set(), set()
        if text not in self._references:
            try:
                ast = self.env.parse(text)
            except TemplateSyntaxError as e:
                raise ExpressionError(f"invalid expression {text!r}: {e.message}") from e
            names = meta.find_undeclared_variables(ast) - set(self.env.globals)
            symbols = set()
            for call in ast.find_all(nodes.Call):
                if not isinstance(call.node, nodes.Name) or call.node.name != REFERENCE_FUNCTION:
                    continue
                if not call.args or not isinstance(call.args[0], nodes.Const):
                    raise ExpressionError(f"{REFERENCE_FUNCTION}() in {text!r} needs a literal resource symbol")
                symbols.add(call.args[0].value)
            self._references[text] = (names, symbols)
        return self._references[text]

    def tree_references(self, value: Any) -> Tuple[Set[str], Set[str]]:
        """Names and ``reference()`` symbols used anywhere inside a value."""
        names: Set[str] = set()
        symbols: Set[str] = set()
        if isinstance(value, str):
            return self.references(value)
        children = value.values() if isinstance(value, dict) else value if isinstance(value, list) else []
        for child in children:
            child_names, child_symbols = self.tree_references(child)
            names |= child_names
            symbols |= child_symbols
        return names, symbols

    def _compile(self, text: str):
        if text not in self._compiled:
            if self._is_single_expression(text):
                source = text[len(INTERPOLATION_START):-len(INTERPOLATION_END)]
                self._compiled[text] = (source, self.env.compile_expression(source, undefined_to_none=False))
            else:
                self._compiled[text] = self.env.from_string(text)
        return self._compiled[text]

    def _is_single_expression(self, text: str) -> bool:
        tokens = [token for _, token, _ in self.env.lex(text)]
        return (
            bool(tokens)
            and tokens[0] == "variable_begin"
            and tokens[-1] == "variable_end"
            and tokens.count("variable_begin") == 1
        )
