"""Data models for resolved templates."""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import SecretStr

from .errors import SecretExposure


@dataclass(frozen=True)
class SecureValue:
    """A secure parameter value bound somewhere in the graph.

    It can only be bound whole. Turning it into text raises
    ``SecretExposure``; ``serialize`` emits the ARM parameter reference.
    """
    parameter: str
    secret: SecretStr

    def reveal(self) -> str:
        return self.secret.get_secret_value()

    def arm_reference(self) -> str:
        return f"[parameters('{self.parameter}')]"

    def __str__(self) -> str:
        raise SecretExposure(
            f"secure parameter '{self.parameter}' cannot be converted to a string",
            name=self.parameter,
        )

    def __format__(self, format_spec: str) -> str:
        return str(self)


def serialize(value: Any, reveal_secrets: bool = False) -> Any:
    """Convert a resolved value into plain JSON-compatible data."""
    if isinstance(value, SecureValue):
        return value.reveal() if reveal_secrets else value.arm_reference()
    if isinstance(value, dict):
        return {k: serialize(v, reveal_secrets) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v, reveal_secrets) for v in value]
    return value


def collect_secure_parameters(value: Any, found: Optional[Set[str]] = None) -> Set[str]:
    """Collect the names of secure parameters bound inside a value."""
    found = set() if found is None else found
    if isinstance(value, SecureValue):
        found.add(value.parameter)
    elif isinstance(value, dict):
        for v in value.values():
            collect_secure_parameters(v, found)
    elif isinstance(value, (list, tuple)):
        for v in value:
            collect_secure_parameters(v, found)
    return found


@dataclass(frozen=True)
class ResolvedResource:
    """One concrete resource in a resolved graph."""
    symbol: str
    type: str
    api_version: str
    name: str
    segments: Tuple[str, ...]
    location: Optional[str] = None
    sku: Optional[Dict[str, Any]] = None
    kind: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    parent: Optional[str] = None
    scope: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        """Name including parent segments, e.g. ``account/default/data``."""
        return "/".join(self.segments)

    def resource_id_expression(self) -> str:
        """ARM ``resourceId(...)`` call for this resource, without brackets."""
        args = ", ".join(f"'{segment}'" for segment in self.segments)
        return f"resourceId('{self.type}', {args})"

    def to_dict(self, reveal_secrets: bool = False) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "symbol": self.symbol,
            "type": self.type,
            "apiVersion": self.api_version,
            "name": self.name,
        }
        for key, value in (
            ("location", self.location),
            ("sku", self.sku),
            ("kind", self.kind),
            ("tags", self.tags),
            ("parent", self.parent),
            ("scope", self.scope),
        ):
            if value is not None:
                result[key] = serialize(value, reveal_secrets)
        result["properties"] = serialize(self.properties, reveal_secrets)
        result["dependsOn"] = list(self.depends_on)
        return result


class ResourceView:
    """What expressions see when they call ``reference('<symbol>')``."""

    def __init__(self, resource: ResolvedResource):
        self._resource = resource

    @property
    def name(self) -> str:
        return self._resource.name

    @property
    def type(self) -> str:
        return self._resource.type

    @property
    def location(self) -> Optional[str]:
        return self._resource.location

    @property
    def properties(self) -> Dict[str, Any]:
        return self._resource.properties

    @property
    def id(self) -> str:
        return f"[{self._resource.resource_id_expression()}]"

    def runtime(self, path: str) -> str:
        """Runtime property only known to the deployment platform."""
        return f"[reference({self._resource.resource_id_expression()}, '{self._resource.api_version}').{path}]"

    def list_keys(self, path: str) -> str:
        """Runtime access key lookup, e.g. ``keys[0].value``."""
        return f"[listKeys({self._resource.resource_id_expression()}, '{self._resource.api_version}').{path}]"


@dataclass(frozen=True)
class ResourceGraph:
    """Resolved resources keyed by symbol, in declaration order."""
    resources: Dict[str, ResolvedResource]
    excluded: List[str] = field(default_factory=list)

    def __iter__(self) -> Iterator[ResolvedResource]:
        return iter(self.resources.values())

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self.resources

    def __getitem__(self, symbol: str) -> ResolvedResource:
        return self.resources[symbol]

    def of_type(self, resource_type: str) -> List[ResolvedResource]:
        """All resources of the given type, in order."""
        return [r for r in self.resources.values() if r.type.lower() == resource_type.lower()]

    def instances(self, symbol: str) -> List[ResolvedResource]:
        """All instances produced by a for-each declaration, in input order."""
        prefix = f"{symbol}["
        return [r for s, r in self.resources.items() if s.startswith(prefix)]

    def secure_parameters(self) -> Set[str]:
        """Names of the secure parameters bound anywhere in the graph."""
        found: Set[str] = set()
        for resource in self.resources.values():
            for value in (resource.location, resource.sku, resource.kind, resource.tags, resource.properties):
                collect_secure_parameters(value, found)
        return found

    def to_dict(self, reveal_secrets: bool = False) -> Dict[str, Any]:
        return {
            "resources": [r.to_dict(reveal_secrets) for r in self.resources.values()],
            "excluded": list(self.excluded),
        }

    def save(self, output_path: str, outputs: Optional["OutputSet"] = None) -> None:
        """Save the non-secure serialization to a JSON file.

        Args:
            output_path: Path to write the JSON file.
            outputs: Resolved outputs to include alongside the resources.
        """
        result = self.to_dict()
        if outputs is not None:
            result["outputs"] = serialize(outputs.to_dict())
        with open(output_path, 'w') as f:
            json.dump(result, f, indent=2)
            f.write("\n")


@dataclass(frozen=True)
class OutputSet:
    """Named outputs of a resolution together with their declared types."""
    values: Dict[str, Any]
    types: Dict[str, str] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __len__(self) -> int:
        return len(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: {"type": self.types.get(name, "string"), "value": value}
            for name, value in self.values.items()
        }
