"""YAML template and parameter file parsers."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .schema import TemplateSpec

BUILTIN_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


class TemplateParser:
    """Parser for YAML deployment templates."""

    @staticmethod
    def load(file_path: str) -> TemplateSpec:
        """Load and validate a YAML template file.

        Args:
            file_path: Path to the YAML template file.

        Returns:
            TemplateSpec: Validated template object.

        Raises:
            FileNotFoundError: If the template file doesn't exist.
            ValidationError: If the template is invalid.
            yaml.YAMLError: If the YAML is malformed.
        """
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f)
        return TemplateSpec.model_validate(data)

    @staticmethod
    def builtin_names() -> List[str]:
        """Names of the templates shipped with the package."""
        return sorted(p.stem for p in BUILTIN_TEMPLATE_DIR.glob("*.yaml"))

    @classmethod
    def load_builtin(cls, name: str) -> TemplateSpec:
        """Load one of the templates shipped with the package.

        Raises:
            FileNotFoundError: If there is no built-in template with that name.
        """
        path = BUILTIN_TEMPLATE_DIR / f"{name}.yaml"
        if not path.exists():
            raise FileNotFoundError(
                f"Unknown template '{name}'. Available: {', '.join(cls.builtin_names())}"
            )
        return cls.load(str(path))

    @classmethod
    def resolve_reference(cls, reference: str) -> TemplateSpec:
        """Load a template given either a built-in name or a file path."""
        if reference in cls.builtin_names():
            return cls.load_builtin(reference)
        return cls.load(reference)


class ParameterFileParser:
    """Parser for parameter files.

    Accepts ARM parameter files (``{"parameters": {"x": {"value": 1}}}``) and
    flat mappings, in JSON or YAML.
    """

    @staticmethod
    def read(file_path: str) -> Dict[str, Any]:
        """Read the raw file content as a mapping."""
        with open(file_path, 'r') as f:
            if Path(file_path).suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Parameter file {file_path} must contain a mapping")
        return data

    @staticmethod
    def is_arm_format(data: Dict[str, Any]) -> bool:
        return isinstance(data.get("parameters"), dict) and (
            "$schema" in data
            or "contentVersion" in data
            or all(isinstance(v, dict) and "value" in v for v in data["parameters"].values())
        )

    @classmethod
    def load(cls, file_path: str, template: Optional[TemplateSpec] = None) -> Dict[str, Any]:
        """Load parameter values from a file.

        Args:
            file_path: Path to the parameter file.
            template: If given, secure parameters in the file are rejected.

        Returns:
            Dict[str, Any]: Parameter values by name.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the file holds a secure parameter or is malformed.
        """
        data = cls.read(file_path)
        if cls.is_arm_format(data):
            values = {}
            for name, entry in data["parameters"].items():
                if not isinstance(entry, dict) or "value" not in entry:
                    raise ValueError(f"Parameter '{name}' in {file_path} has no 'value'")
                values[name] = entry["value"]
        else:
            values = dict(data)

        if template is not None:
            secure = [name for name in values if name in template.secure_parameter_names()]
            if secure:
                raise ValueError(
                    f"Secure parameter(s) {', '.join(secure)} must not be stored in {file_path}; "
                    "supply them through the environment instead"
                )
        return values
