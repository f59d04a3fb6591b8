"""ARM deployment template emitter."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..resolver.models import OutputSet, ResolvedResource, ResourceGraph, serialize
from ..resolver.parameters import to_snake_case
from ..template.schema import TemplateSpec

TEMPLATE_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#"
PARAMETERS_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#"
CONTENT_VERSION = "1.0.0.0"


def scope_path(resource: ResolvedResource) -> str:
    """Relative resource path used by extension resources,
    e.g. ``Microsoft.Storage/storageAccounts/acct/fileServices/default``.
    """
    namespace, *types = resource.type.split("/")
    return namespace + "".join(f"/{t}/{n}" for t, n in zip(types, resource.segments))


def secret_name(parameter: str) -> str:
    """Key Vault secret name for a secure parameter."""
    return to_snake_case(parameter).replace("_", "-")


class ArmTemplateEmitter:
    """Writes a resolved graph as an ARM deployment template."""

    def __init__(
        self,
        graph: ResourceGraph,
        outputs: OutputSet,
        template: TemplateSpec,
        output_dir: str,
        key_vault_id: Optional[str] = None,
        debug: bool = False,
    ):
        """Initialize the emitter.

        Args:
            graph: Resolved resource graph.
            outputs: Resolved outputs.
            template: Template the graph was resolved from.
            output_dir: Directory for the generated files.
            key_vault_id: Key Vault resource id used for secure parameters.
            debug: If True, print verbose debug information.
        """
        self.graph = graph
        self.outputs = outputs
        self.template = template
        self.output_dir = output_dir
        self.key_vault_id = key_vault_id
        self.debug = debug

        Path(self.output_dir).mkdir(parents=True, exist_ok=True)

    def generate(self) -> Tuple[str, str]:
        """Generate the template and parameters files.

        Returns:
            Tuple[str, str]: Paths to the template and parameters files.
        """
        template_path = Path(self.output_dir) / "azuredeploy.json"
        params_path = Path(self.output_dir) / "azuredeploy.parameters.json"

        template_path.write_text(json.dumps(self.build_template(), indent=2) + "\n")
        params_path.write_text(json.dumps(self.build_parameters(), indent=2) + "\n")

        if self.debug:
            print(f"Debug: Template written to {template_path}")
            print(f"Debug: Parameters file written to {params_path}")

        return str(template_path), str(params_path)

    def build_template(self) -> Dict[str, Any]:
        return {
            "$schema": TEMPLATE_SCHEMA,
            "contentVersion": CONTENT_VERSION,
            "metadata": {
                "name": self.template.metadata.name,
                "version": self.template.metadata.version,
            },
            "parameters": self._secure_parameters(),
            "resources": [self._resource(r) for r in self.graph],
            "outputs": {
                name: {"type": self.outputs.types.get(name, "string"), "value": value}
                for name, value in self.outputs.values.items()
            },
        }

    def build_parameters(self) -> Dict[str, Any]:
        """Parameters file; secure values only ever appear as Key Vault references."""
        parameters = {}
        if self.key_vault_id:
            for name in sorted(self.graph.secure_parameters()):
                parameters[name] = {
                    "reference": {
                        "keyVault": {"id": self.key_vault_id},
                        "secretName": secret_name(name),
                    }
                }
        return {
            "$schema": PARAMETERS_SCHEMA,
            "contentVersion": CONTENT_VERSION,
            "parameters": parameters,
        }

    def _secure_parameters(self) -> Dict[str, Any]:
        declared = {}
        for name in sorted(self.graph.secure_parameters()):
            spec = self.template.parameters[name]
            entry: Dict[str, Any] = {"type": "securestring"}
            if spec.description:
                entry["metadata"] = {"description": spec.description}
            declared[name] = entry
        return declared

    def _resource(self, resource: ResolvedResource) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "type": resource.type,
            "apiVersion": resource.api_version,
            "name": resource.qualified_name,
        }
        if resource.scope:
            entry["scope"] = scope_path(self.graph[resource.scope])
        for key, value in (
            ("location", resource.location),
            ("sku", resource.sku),
            ("kind", resource.kind),
            ("tags", resource.tags),
        ):
            if value is not None:
                entry[key] = serialize(value)
        if resource.properties:
            entry["properties"] = serialize(resource.properties)
        depends_on = self._depends_on(resource)
        if depends_on:
            entry["dependsOn"] = depends_on
        return entry

    def _depends_on(self, resource: ResolvedResource) -> List[str]:
        return [f"[{self.graph[symbol].resource_id_expression()}]" for symbol in resource.depends_on]
