"""Template resolution: parameters in, resolved resource graph and outputs out."""
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from ..template.schema import OutputSpec, ResourceSpec, TemplateSpec
from .errors import (
    CircularReference,
    DanglingReference,
    DuplicateResourceName,
    ExpressionError,
    InvalidArrayIndex,
    SecretExposure,
    TypeMismatch,
    UndeclaredReference,
)
from .expressions import OMIT, REFERENCE_FUNCTION, ExpressionEvaluator
from .models import (
    OutputSet,
    ResolvedResource,
    ResourceGraph,
    ResourceView,
    SecureValue,
    collect_secure_parameters,
)
from .parameters import validate_parameters

ITEM_NAME = "item"
INDEX_NAME = "index"

Node = Tuple[str, str]  # ("variable" | "resource", name)


class TemplateResolver:
    """Resolves a template against a parameter set.

    The resolver holds no per-resolution state; each call to ``resolve`` is
    independent and either returns a complete result or raises a
    ``ResolutionError``.
    """

    def __init__(self, template: TemplateSpec, debug: bool = False):
        """Initialize the resolver.

        Args:
            template: Validated template.
            debug: If True, print verbose debug information.
        """
        self.template = template
        self.debug = debug
        self.evaluator = ExpressionEvaluator()

    def resolve(self, parameters: Mapping[str, Any]) -> Tuple[ResourceGraph, OutputSet]:
        """Resolve the template.

        Args:
            parameters: Parameter values by name. Secure values may be plain
                strings or ``pydantic.SecretStr``.

        Returns:
            Tuple[ResourceGraph, OutputSet]: The resolved graph and outputs.

        Raises:
            ResolutionError: If any validation step fails.
        """
        return _Resolution(self, parameters).run()


class _Resolution:
    """State of a single resolve() call."""

    def __init__(self, resolver: TemplateResolver, parameters: Mapping[str, Any]):
        self.template = resolver.template
        self.evaluator = resolver.evaluator
        self.debug = resolver.debug
        self.parameters = validate_parameters(self.template, parameters, self.evaluator, debug=self.debug)
        self.context: Dict[str, Any] = dict(self.parameters)
        self.context[REFERENCE_FUNCTION] = self._reference
        self.resolved: Dict[str, List[ResolvedResource]] = {}
        self.excluded: Set[str] = set()

    def run(self) -> Tuple[ResourceGraph, OutputSet]:
        for kind, name in self._evaluation_order():
            if kind == "variable":
                value = self.evaluator.evaluate_tree(self.template.variables[name], self.context)
                self.context[name] = None if value is OMIT else value
                if self.debug:
                    shown = "<secure>" if collect_secure_parameters(value) else repr(value)
                    print(f"Debug: Variable {name} = {shown}")
            else:
                self._resolve_resource(name, self.template.resources[name])

        graph = self._build_graph()
        outputs = self._resolve_outputs()
        if self.debug:
            print(f"Debug: Resolved {len(graph)} resources, {len(graph.excluded)} excluded, {len(outputs)} outputs")
        return graph, outputs

    # Dependency analysis

    def _allowed_names(self) -> Set[str]:
        # item and index are only bound inside loops; elsewhere they fail as undefined
        return set(self.template.parameters) | set(self.template.variables) | {REFERENCE_FUNCTION, ITEM_NAME, INDEX_NAME}

    def _check_references(self, owner: str, value: Any) -> Tuple[Set[str], Set[str]]:
        names, symbols = self.evaluator.tree_references(value)
        undeclared = names - self._allowed_names()
        if undeclared:
            missing = sorted(undeclared)[0]
            raise UndeclaredReference(f"{owner} refers to undeclared name '{missing}'", name=missing)
        for symbol in symbols:
            if symbol not in self.template.resources:
                raise UndeclaredReference(f"{owner} refers to undeclared resource '{symbol}'", name=symbol)
        return names, symbols

    def _dependencies(self) -> Dict[Node, Set[Node]]:
        deps: Dict[Node, Set[Node]] = {}
        variables = set(self.template.variables)

        for name, value in self.template.variables.items():
            names, symbols = self._check_references(f"variable '{name}'", value)
            deps[("variable", name)] = (
                {("variable", n) for n in names & variables} | {("resource", s) for s in symbols}
            )

        for symbol, spec in self.template.resources.items():
            fields = [spec.name, spec.location, spec.sku, spec.kind, spec.tags,
                      spec.properties, spec.condition, spec.for_each]
            names, symbols = self._check_references(
                f"resource '{symbol}'", [f for f in fields if f is not None]
            )
            targets = set(symbols) | set(spec.depends_on)
            targets |= {t for t in (spec.parent, spec.scope) if t is not None}
            deps[("resource", symbol)] = (
                {("variable", n) for n in names & variables} | {("resource", t) for t in targets}
            )

        for name, spec in self.template.outputs.items():
            self._check_references(f"output '{name}'", [spec.value, spec.condition])

        return deps

    def _evaluation_order(self) -> List[Node]:
        """Order nodes so dependencies come first, otherwise in declaration order."""
        deps = self._dependencies()
        remaining = list(deps)
        done: Set[Node] = set()
        order: List[Node] = []
        while remaining:
            ready = next((node for node in remaining if deps[node] <= done), None)
            if ready is None:
                cycle = ", ".join(f"{kind} '{name}'" for kind, name in remaining)
                raise CircularReference(f"circular reference between {cycle}", name=remaining[0][1])
            remaining.remove(ready)
            done.add(ready)
            order.append(ready)
        return order

    # Resources

    def _reference(self, symbol: str, index: Optional[int] = None) -> ResourceView:
        if symbol not in self.template.resources:
            raise UndeclaredReference(f"reference to undeclared resource '{symbol}'", name=symbol)
        if symbol in self.excluded:
            raise DanglingReference(
                f"missing reference: resource '{symbol}' is excluded by its condition", name=symbol
            )
        if symbol not in self.resolved:
            raise ExpressionError(f"resource '{symbol}' referenced before it was resolved", name=symbol)

        instances = self.resolved[symbol]
        if self.template.resources[symbol].for_each is None:
            if index is not None:
                raise InvalidArrayIndex(f"resource '{symbol}' is not a for-each resource", name=symbol)
            return ResourceView(instances[0])
        if index is None:
            raise InvalidArrayIndex(f"for-each resource '{symbol}' needs an index", name=symbol)
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(instances):
            raise InvalidArrayIndex(
                f"index {index!r} out of range for '{symbol}' with {len(instances)} instance(s)", name=symbol
            )
        return ResourceView(instances[index])

    def _resolve_resource(self, symbol: str, spec: ResourceSpec) -> None:
        if spec.condition is not None and not self.evaluator.evaluate_condition(spec.condition, self.context):
            self.excluded.add(symbol)
            if self.debug:
                print(f"Debug: Resource {symbol} excluded by condition")
            return

        for relation, target in (("parent", spec.parent), ("scope", spec.scope)):
            if target in self.excluded:
                raise DanglingReference(
                    f"missing reference: {relation} '{target}' of resource '{symbol}' is excluded by its condition",
                    name=target,
                )

        if spec.for_each is None:
            self.resolved[symbol] = [self._build(symbol, spec, symbol, self.context)]
            return

        items = self.evaluator.evaluate_tree(spec.for_each, self.context)
        if not isinstance(items, list):
            raise TypeMismatch(f"forEach of resource '{symbol}' must be an array", name=symbol)
        self.resolved[symbol] = [
            self._build(symbol, spec, f"{symbol}[{i}]", {**self.context, ITEM_NAME: item, INDEX_NAME: i})
            for i, item in enumerate(items)
        ]

    def _build(self, symbol: str, spec: ResourceSpec, instance: str, context: Dict[str, Any]) -> ResolvedResource:
        evaluate = self.evaluator.evaluate_tree

        name = evaluate(spec.name, context)
        if isinstance(name, SecureValue):
            raise SecretExposure(f"resource '{instance}' cannot be named after a secure parameter", name=instance)
        if not isinstance(name, str) or not name:
            raise TypeMismatch(f"resource '{instance}' name must be a non-empty string, got {name!r}", name=instance)

        parent = self.resolved[spec.parent][0] if spec.parent else None
        scope = self.resolved[spec.scope][0] if spec.scope else None
        segments = (*parent.segments, name) if parent else (name,)

        depends_on: List[str] = []
        for target in dict.fromkeys(t for t in (spec.parent, spec.scope, *spec.depends_on) if t):
            if target in self.excluded:
                if self.debug:
                    print(f"Debug: Dropped dependency {instance} -> {target} (excluded)")
                continue
            depends_on.extend(r.symbol for r in self.resolved[target])

        properties = evaluate(spec.properties, context)
        return ResolvedResource(
            symbol=instance,
            type=spec.type,
            api_version=spec.api_version,
            name=name,
            segments=segments,
            location=self._optional(evaluate(spec.location, context)),
            sku=self._optional(evaluate(spec.sku, context)),
            kind=self._optional(evaluate(spec.kind, context)),
            tags=self._optional(evaluate(spec.tags, context)),
            properties={} if properties is OMIT else properties,
            parent=parent.symbol if parent else None,
            scope=scope.symbol if scope else None,
            depends_on=depends_on,
        )

    @staticmethod
    def _optional(value: Any) -> Any:
        return None if value is OMIT else value

    def _build_graph(self) -> ResourceGraph:
        resources: Dict[str, ResolvedResource] = {}
        seen: Dict[Tuple[str, str], str] = {}
        for symbol in self.template.resources:
            for resource in self.resolved.get(symbol, []):
                key = (resource.type.lower(), resource.qualified_name.lower())
                if key in seen:
                    raise DuplicateResourceName(
                        f"resources '{seen[key]}' and '{resource.symbol}' are both "
                        f"{resource.type} named '{resource.qualified_name}'",
                        name=resource.qualified_name,
                    )
                seen[key] = resource.symbol
                resources[resource.symbol] = resource
        excluded = [symbol for symbol in self.template.resources if symbol in self.excluded]
        return ResourceGraph(resources=resources, excluded=excluded)

    # Outputs

    def _resolve_outputs(self) -> OutputSet:
        values: Dict[str, Any] = {}
        types: Dict[str, str] = {}
        for name, spec in self.template.outputs.items():
            if spec.condition is not None and not self.evaluator.evaluate_condition(spec.condition, self.context):
                if self.debug:
                    print(f"Debug: Output {name} skipped by condition")
                continue
            value = self.evaluator.evaluate_tree(spec.value, self.context)
            self._check_output(name, spec, value)
            values[name] = value
            types[name] = spec.type
        return OutputSet(values=values, types=types)

    @staticmethod
    def _check_output(name: str, spec: OutputSpec, value: Any) -> None:
        if collect_secure_parameters(value):
            raise SecretExposure(f"output '{name}' would expose a secure parameter", name=name)
        if spec.type == "string":
            ok = isinstance(value, str)
        elif spec.type == "int":
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif spec.type == "bool":
            ok = isinstance(value, bool)
        else:
            ok = isinstance(value, list)
        if not ok:
            raise TypeMismatch(f"output '{name}' expects {spec.type}, got {type(value).__name__}", name=name)
