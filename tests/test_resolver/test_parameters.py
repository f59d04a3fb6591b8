"""Tests for parameter validation and coercion."""
import pytest
from pydantic import SecretStr

from gamehost.resolver.errors import (
    ConstraintViolation,
    MissingRequiredParameter,
    SecretExposure,
    TypeMismatch,
    UnknownParameter,
)
from gamehost.resolver.expressions import ExpressionEvaluator
from gamehost.resolver.models import SecureValue
from gamehost.resolver.parameters import (
    parse_assignments,
    parse_cli_value,
    secure_env_var,
    secure_parameters_from_environment,
    validate_parameters,
)
from gamehost.template.parser import TemplateParser
from gamehost.template.schema import ParameterSpec

API_KEY = "cf-secret-key-123"


@pytest.fixture
def template():
    return TemplateParser.load_builtin("pixelmon-whitelist")


def validate(template, supplied, debug=False):
    return validate_parameters(template, supplied, ExpressionEvaluator(), debug=debug)


def test_defaults_are_applied(template):
    values = validate(template, {"location": "eastus", "curseForgeApiKey": API_KEY})
    assert values["cpuCores"] == 4
    assert values["spotInstance"] is True
    assert values["fileShareNames"] == ["data", "mods"]
    assert values["whitelist"] == []
    assert list(values) == list(template.parameters)


def test_derived_storage_account_name(template):
    """The storage account default is derived, lowercase and at most 24 characters."""
    values = validate(template, {"location": "eastus", "curseForgeApiKey": API_KEY})
    name = values["storageAccountName"]
    assert name.startswith("pixelmon")
    assert len(name) <= 24
    assert name == name.lower() and name.isalnum()

    other = validate(template, {"location": "westeurope", "curseForgeApiKey": API_KEY})
    assert other["storageAccountName"] != name


def test_derived_workspace_name(template):
    values = validate(template, {"location": "eastus", "curseForgeApiKey": API_KEY, "containerGroupName": "My-Server"})
    assert values["logAnalyticsWorkspaceName"] == "my-server-logs"


def test_missing_required_parameter(template):
    with pytest.raises(MissingRequiredParameter) as exc_info:
        validate(template, {"curseForgeApiKey": API_KEY})
    assert exc_info.value.name == "location"


def test_missing_secure_parameter(template):
    with pytest.raises(MissingRequiredParameter) as exc_info:
        validate(template, {"location": "eastus"})
    assert exc_info.value.name == "curseForgeApiKey"


def test_unknown_parameter(template):
    with pytest.raises(UnknownParameter):
        validate(template, {"location": "eastus", "curseForgeApiKey": API_KEY, "colour": "red"})


@pytest.mark.parametrize("name, value", [
    ("cpuCores", "4"),
    ("cpuCores", True),
    ("spotInstance", "true"),
    ("location", 1),
    ("whitelist", "Ash"),
    ("ops", ["Ash", 3]),
])
def test_type_mismatch(template, name, value):
    supplied = {"location": "eastus", "curseForgeApiKey": API_KEY, name: value}
    with pytest.raises(TypeMismatch) as exc_info:
        validate(template, supplied)
    assert exc_info.value.name == name


@pytest.mark.parametrize("name, value", [
    ("cpuCores", 8),
    ("memoryInGB", 1),
    ("storageAccountName", "this-name-is-not-valid"),
    ("storageAccountName", "a" * 25),
    ("fileShareNames", []),
])
def test_constraint_violation(template, name, value):
    supplied = {"location": "eastus", "curseForgeApiKey": API_KEY, name: value}
    with pytest.raises(ConstraintViolation):
        validate(template, supplied)


def test_secure_values_are_wrapped(template):
    values = validate(template, {"location": "eastus", "curseForgeApiKey": SecretStr(API_KEY)})
    secure = values["curseForgeApiKey"]
    assert isinstance(secure, SecureValue)
    assert secure.reveal() == API_KEY
    assert secure.arm_reference() == "[parameters('curseForgeApiKey')]"
    assert API_KEY not in repr(secure)
    with pytest.raises(SecretExposure):
        str(secure)
    with pytest.raises(SecretExposure):
        f"{secure}"


def test_secure_type_mismatch_hides_value(template):
    with pytest.raises(TypeMismatch) as exc_info:
        validate(template, {"location": "eastus", "curseForgeApiKey": 12345})
    assert "12345" not in str(exc_info.value)


def test_debug_output_hides_secrets(template, capsys):
    validate(template, {"location": "eastus", "curseForgeApiKey": API_KEY}, debug=True)
    out = capsys.readouterr().out
    assert "Debug: Parameter location = 'eastus' (supplied)" in out
    assert "Debug: Parameter curseForgeApiKey = <secure> (supplied)" in out
    assert API_KEY not in out


def test_parse_cli_value():
    assert parse_cli_value("n", ParameterSpec(type="int"), "6") == 6
    assert parse_cli_value("b", ParameterSpec(type="bool"), "TRUE") is True
    assert parse_cli_value("b", ParameterSpec(type="bool"), "false") is False
    assert parse_cli_value("s", ParameterSpec(type="string"), "42") == "42"
    assert parse_cli_value("a", ParameterSpec(type="array"), "Ash, Misty") == ["Ash", "Misty"]
    assert parse_cli_value("a", ParameterSpec(type="array"), '["Ash", "Misty"]') == ["Ash", "Misty"]
    assert parse_cli_value("a", ParameterSpec(type="array"), "") == []


def test_parse_cli_value_rejects_bad_input():
    with pytest.raises(TypeMismatch):
        parse_cli_value("n", ParameterSpec(type="int"), "six")
    with pytest.raises(TypeMismatch):
        parse_cli_value("b", ParameterSpec(type="bool"), "yes")
    with pytest.raises(TypeMismatch):
        parse_cli_value("a", ParameterSpec(type="array"), "[broken")


def test_parse_assignments(template):
    values = parse_assignments(template, ["memoryInGB=6", "ops=Ash,Brock", "serverName=My = Server"])
    assert values == {"memoryInGB": 6, "ops": ["Ash", "Brock"], "serverName": "My = Server"}


def test_parse_assignments_rejects_secure_and_unknown(template):
    with pytest.raises(SecretExposure) as exc_info:
        parse_assignments(template, [f"curseForgeApiKey={API_KEY}"])
    assert API_KEY not in str(exc_info.value)
    assert "GAMEHOST_CURSE_FORGE_API_KEY" in str(exc_info.value)

    with pytest.raises(UnknownParameter):
        parse_assignments(template, ["colour=red"])
    with pytest.raises(TypeMismatch):
        parse_assignments(template, ["memoryInGB"])


def test_secure_env_var():
    assert secure_env_var("curseForgeApiKey") == "GAMEHOST_CURSE_FORGE_API_KEY"
    assert secure_env_var("dockerHubPersonalAccessToken") == "GAMEHOST_DOCKER_HUB_PERSONAL_ACCESS_TOKEN"


def test_secure_parameters_from_environment(template):
    values = secure_parameters_from_environment(
        template, {"GAMEHOST_CURSE_FORGE_API_KEY": API_KEY, "GAMEHOST_LOCATION": "eastus"}
    )
    assert list(values) == ["curseForgeApiKey"]
    assert values["curseForgeApiKey"].get_secret_value() == API_KEY
    assert secure_parameters_from_environment(template, {}) == {}
