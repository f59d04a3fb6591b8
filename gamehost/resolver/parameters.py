"""Parameter validation and coercion."""
import json
import os
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import SecretStr

from ..template.schema import ParameterSpec, TemplateSpec
from .errors import (
    ConstraintViolation,
    MissingRequiredParameter,
    SecretExposure,
    TypeMismatch,
    UnknownParameter,
)
from .expressions import ExpressionEvaluator
from .models import SecureValue

SECURE_ENV_PREFIX = "GAMEHOST_"

_PYTHON_TYPES = {
    "string": "str",
    "int": "int",
    "bool": "bool",
    "array": "list of str",
}


def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def secure_env_var(name: str) -> str:
    """Environment variable a secure parameter is read from."""
    return SECURE_ENV_PREFIX + to_snake_case(name).upper()


def check_type(name: str, spec: ParameterSpec, value: Any) -> Any:
    """Check a value against its declared type and return it.

    Raises:
        TypeMismatch: If the value has the wrong type.
    """
    if spec.type == "string":
        ok = isinstance(value, str)
    elif spec.type == "int":
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif spec.type == "bool":
        ok = isinstance(value, bool)
    else:
        ok = isinstance(value, list) and all(isinstance(item, str) for item in value)
    if not ok:
        shown = "<secure>" if spec.secure else repr(value)
        raise TypeMismatch(
            f"parameter '{name}' expects {_PYTHON_TYPES[spec.type]}, got {type(value).__name__} {shown}",
            name=name,
        )
    return value


def check_constraints(name: str, spec: ParameterSpec, value: Any) -> None:
    """Check allowed values, ranges, lengths and patterns.

    Raises:
        ConstraintViolation: If a constraint is not met.
    """
    shown = "<secure>" if spec.secure else repr(value)

    if spec.allowed_values is not None:
        candidates = value if spec.type == "array" else [value]
        for candidate in candidates:
            if candidate not in spec.allowed_values:
                raise ConstraintViolation(
                    f"parameter '{name}' value {shown} is not one of {spec.allowed_values}", name=name
                )

    if spec.type == "int":
        if spec.min_value is not None and value < spec.min_value:
            raise ConstraintViolation(f"parameter '{name}' must be >= {spec.min_value}, got {value}", name=name)
        if spec.max_value is not None and value > spec.max_value:
            raise ConstraintViolation(f"parameter '{name}' must be <= {spec.max_value}, got {value}", name=name)

    if spec.type in ("string", "array"):
        if spec.min_length is not None and len(value) < spec.min_length:
            raise ConstraintViolation(
                f"parameter '{name}' must have length >= {spec.min_length}, got {len(value)}", name=name
            )
        if spec.max_length is not None and len(value) > spec.max_length:
            raise ConstraintViolation(
                f"parameter '{name}' must have length <= {spec.max_length}, got {len(value)}", name=name
            )

    if spec.type == "string" and spec.pattern is not None and not re.fullmatch(spec.pattern, value):
        raise ConstraintViolation(f"parameter '{name}' value {shown} does not match {spec.pattern}", name=name)


def validate_parameters(
    template: TemplateSpec,
    supplied: Mapping[str, Any],
    evaluator: ExpressionEvaluator,
    debug: bool = False,
) -> Dict[str, Any]:
    """Validate supplied parameters and fill in defaults.

    Defaults may be expressions over parameters declared before them.
    Secure values come back wrapped in ``SecureValue``.

    Returns:
        Dict[str, Any]: Parameter values in declaration order.
    """
    unknown = [name for name in supplied if name not in template.parameters]
    if unknown:
        raise UnknownParameter(f"unknown parameter(s): {', '.join(sorted(unknown))}", name=unknown[0])

    values: Dict[str, Any] = {}
    for name, spec in template.parameters.items():
        if supplied.get(name) is not None:
            value = supplied[name]
            source = "supplied"
        elif spec.default is not None:
            value = evaluator.evaluate_tree(spec.default, dict(values))
            source = "default"
        else:
            raise MissingRequiredParameter(f"missing required parameter '{name}'", name=name)

        if spec.secure:
            if isinstance(value, SecureValue):
                value = value.reveal()
            elif isinstance(value, SecretStr):
                value = value.get_secret_value()

        check_type(name, spec, value)
        check_constraints(name, spec, value)

        if spec.secure:
            value = SecureValue(parameter=name, secret=SecretStr(value))

        if debug:
            shown = "<secure>" if spec.secure else repr(value)
            print(f"Debug: Parameter {name} = {shown} ({source})")
        values[name] = value
    return values


def parse_cli_value(name: str, spec: ParameterSpec, raw: str) -> Any:
    """Convert a command-line string into the declared parameter type.

    Arrays accept JSON (``["a", "b"]``) or comma separated values.
    """
    if spec.type == "string":
        return raw
    if spec.type == "int":
        try:
            return int(raw)
        except ValueError:
            raise TypeMismatch(f"parameter '{name}' expects an integer, got {raw!r}", name=name)
    if spec.type == "bool":
        lowered = raw.strip().lower()
        if lowered not in ("true", "false"):
            raise TypeMismatch(f"parameter '{name}' expects true or false, got {raw!r}", name=name)
        return lowered == "true"
    stripped = raw.strip()
    if stripped.startswith("["):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError as e:
            raise TypeMismatch(f"parameter '{name}' is not a valid JSON array: {e}", name=name) from e
    return [item.strip() for item in stripped.split(",") if item.strip()]


def parse_assignments(template: TemplateSpec, assignments: List[str]) -> Dict[str, Any]:
    """Parse ``name=value`` command-line assignments.

    Raises:
        UnknownParameter: If a name is not declared.
        SecretExposure: If a secure parameter is passed on the command line.
    """
    values: Dict[str, Any] = {}
    for assignment in assignments:
        name, sep, raw = assignment.partition("=")
        name = name.strip()
        if not sep:
            raise TypeMismatch(f"expected name=value, got {assignment!r}", name=name)
        spec = template.parameters.get(name)
        if spec is None:
            raise UnknownParameter(f"unknown parameter '{name}'", name=name)
        if spec.secure:
            raise SecretExposure(
                f"secure parameter '{name}' cannot be passed on the command line; "
                f"set {secure_env_var(name)} instead",
                name=name,
            )
        values[name] = parse_cli_value(name, spec, raw)
    return values


def secure_parameters_from_environment(
    template: TemplateSpec, environ: Optional[Mapping[str, str]] = None
) -> Dict[str, SecretStr]:
    """Read secure parameters from ``GAMEHOST_*`` environment variables."""
    environ = os.environ if environ is None else environ
    values = {}
    for name in template.secure_parameter_names():
        env_name = secure_env_var(name)
        if environ.get(env_name):
            values[name] = SecretStr(environ[env_name])
    return values
