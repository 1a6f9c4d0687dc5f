# graph.py
"""
Dependency graph over resource descriptors.

A descriptor depends on every resource its args reference through
"ref:<resource>.<attribute>" strings, plus the names listed in its
explicit `depends_on`. The graph is validated before anything is handed
to the Pulumi engine, and `order()` yields a submission order in which
every resource comes after everything it references.
"""

import pulumi
from typing import Any, Dict, Iterable, List, Set, Tuple

from config import AzureResource

REF_PREFIX = "ref:"


class TopologyError(ValueError):
    """Base class for invalid resource configurations."""


class DuplicateResourceError(TopologyError):
    pass


class MissingReferenceError(TopologyError):
    pass


class DependencyCycleError(TopologyError):
    pass


def parse_ref(value: str) -> Tuple[str, List[str]]:
    """Split "ref:name.attr.0.value" into ("name", ["attr", "0", "value"]).

    A bare "ref:name" refers to the resource id.
    """
    ref_text = value[len(REF_PREFIX):]
    if "." in ref_text:
        ref_res, ref_path = ref_text.split(".", 1)
        return ref_res, ref_path.split(".")
    return ref_text, ["id"]


def find_refs(value: Any) -> Set[str]:
    """Collect the names of all resources referenced anywhere inside `value`."""
    if isinstance(value, dict):
        found = set()
        for item in value.values():
            found |= find_refs(item)
        return found
    if isinstance(value, (list, tuple)):
        found = set()
        for item in value:
            found |= find_refs(item)
        return found
    if isinstance(value, str) and value.startswith(REF_PREFIX):
        return {parse_ref(value)[0]}
    return set()


class ResourceGraph:
    def __init__(self, resources: Iterable[AzureResource]):
        self.resources: Dict[str, AzureResource] = {}
        for resource in resources:
            if resource.name in self.resources:
                raise DuplicateResourceError(f"Resource '{resource.name}' is declared more than once.")
            self.resources[resource.name] = resource

        self._dependencies: Dict[str, Set[str]] = {
            name: find_refs(resource.args) | set(resource.depends_on)
            for name, resource in self.resources.items()
        }
        self._validate_references()
        self._order = self._sort()

    def _validate_references(self):
        for name, deps in self._dependencies.items():
            missing = sorted(dep for dep in deps if dep not in self.resources)
            if missing:
                raise MissingReferenceError(
                    f"Resource '{name}' references undeclared resource(s): {', '.join(missing)}"
                )
            if name in deps:
                raise DependencyCycleError(f"Resource '{name}' references itself.")

    def _sort(self) -> List[str]:
        # Kahn's algorithm; ties go to declaration order so the result is stable
        position = {name: index for index, name in enumerate(self.resources)}
        remaining = {name: len(deps) for name, deps in self._dependencies.items()}
        ready = [name for name in self.resources if remaining[name] == 0]
        order = []

        while ready:
            ready.sort(key=position.__getitem__)
            name = ready.pop(0)
            order.append(name)
            for dependent in self.dependents(name):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self.resources):
            stuck = sorted((name for name in self.resources if name not in order), key=position.__getitem__)
            raise DependencyCycleError(f"Dependency cycle among resources: {', '.join(stuck)}")

        pulumi.log.debug(f"Resource submission order: {order}")
        return order

    def dependencies(self, name: str) -> Set[str]:
        return set(self._dependencies[name])

    def dependents(self, name: str) -> List[str]:
        return [other for other, deps in self._dependencies.items() if name in deps]

    def order(self) -> List[AzureResource]:
        return [self.resources[name] for name in self._order]
