"""Parameter file updater."""
import json
from pathlib import Path
from typing import Any, Optional

import yaml

from .parser import ParameterFileParser
from .schema import TemplateSpec


class ParameterFileUpdater:
    """Updates parameter files in-place."""

    @staticmethod
    def update_value(file_path: str, name: str, value: Any, template: Optional[TemplateSpec] = None) -> None:
        """Set one parameter value, keeping the file's format and key order.

        Args:
            file_path: Path to the parameter file (ARM or flat, JSON or YAML).
            name: Parameter name.
            value: New value.
            template: If given, the name must be a declared, non-secure parameter.

        Raises:
            FileNotFoundError: If the parameter file doesn't exist.
            KeyError: If the template does not declare the parameter.
            ValueError: If the parameter is secure.
        """
        if template is not None:
            spec = template.parameters.get(name)
            if spec is None:
                raise KeyError(f"Template does not declare parameter '{name}'")
            if spec.secure:
                raise ValueError(f"Secure parameter '{name}' must not be written to a parameter file")

        data = ParameterFileParser.read(file_path)
        if ParameterFileParser.is_arm_format(data):
            data["parameters"].setdefault(name, {})["value"] = value
        else:
            data[name] = value

        # Write back to file, preserving format
        with open(file_path, 'w') as f:
            if Path(file_path).suffix.lower() == ".json":
                json.dump(data, f, indent=2)
                f.write("\n")
            else:
                yaml.dump(data, f, sort_keys=False)
