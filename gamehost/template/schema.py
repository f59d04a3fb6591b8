"""Pydantic models for template validation."""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

ParameterType = Literal["string", "int", "bool", "array"]


class Metadata(BaseModel):
    """Template metadata."""
    name: str
    description: Optional[str] = None
    version: str


class ParameterSpec(BaseModel):
    """Declared input parameter."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: ParameterType
    default: Optional[Any] = Field(default=None, alias="defaultValue")
    secure: bool = False
    description: Optional[str] = None
    allowed_values: Optional[List[Union[str, int]]] = Field(default=None, alias="allowedValues")
    min_value: Optional[int] = Field(default=None, alias="minValue")
    max_value: Optional[int] = Field(default=None, alias="maxValue")
    min_length: Optional[int] = Field(default=None, alias="minLength")
    max_length: Optional[int] = Field(default=None, alias="maxLength")
    pattern: Optional[str] = None

    @property
    def required(self) -> bool:
        return self.default is None

    @model_validator(mode="after")
    def check_secure_type(self) -> "ParameterSpec":
        if self.secure and self.type != "string":
            raise ValueError("only string parameters can be secure")
        return self


class ResourceSpec(BaseModel):
    """Declared resource node."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: str
    api_version: str = Field(alias="apiVersion")
    name: str
    location: Optional[str] = None
    sku: Optional[Dict[str, Any]] = None
    kind: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[Union[bool, str]] = None
    for_each: Optional[Union[str, List[str]]] = Field(default=None, alias="forEach")
    parent: Optional[str] = None
    scope: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")


class OutputSpec(BaseModel):
    """Declared output."""
    model_config = ConfigDict(extra="forbid")

    type: ParameterType = "string"
    value: Any
    condition: Optional[Union[bool, str]] = None


class TemplateSpec(BaseModel):
    """Root template schema."""
    model_config = ConfigDict(extra="forbid")

    metadata: Metadata
    parameters: Dict[str, ParameterSpec] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    resources: Dict[str, ResourceSpec]
    outputs: Dict[str, OutputSpec] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_structure(self) -> "TemplateSpec":
        clashes = set(self.parameters) & set(self.variables)
        if clashes:
            raise ValueError(f"names declared as both parameter and variable: {sorted(clashes)}")

        for symbol, resource in self.resources.items():
            if not symbol.isidentifier():
                raise ValueError(f"resource symbol '{symbol}' is not a valid identifier")
            for target in [*resource.depends_on, resource.parent, resource.scope]:
                if target is not None and target not in self.resources:
                    raise ValueError(f"resource '{symbol}' refers to undeclared resource '{target}'")
            for target in (resource.parent, resource.scope):
                if target is not None and self.resources[target].for_each is not None:
                    raise ValueError(
                        f"resource '{symbol}' cannot use for-each resource '{target}' as parent or scope"
                    )
        return self

    def secure_parameter_names(self) -> List[str]:
        return [name for name, spec in self.parameters.items() if spec.secure]
