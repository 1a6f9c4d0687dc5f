import pulumi
import pulumi_azure_native as azure_native
import pulumi_random
import inspect
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping

from config import AzureResource, Config
from graph import REF_PREFIX, ResourceGraph, parse_ref

PROVIDERS = {
    "azure-native": azure_native,
    "random": pulumi_random,
}

KINDS = ("resource", "invoke")

def _step(value: Any, segment: str) -> Any:
    if segment.isdigit():
        return value[int(segment)]
    if isinstance(value, dict) and segment in value:
        return value[segment]
    return getattr(value, segment)

class AzureResourceBuilder:
    def __init__(self, config: Config, resources: Iterable[AzureResource]):
        self.config = config
        # Raises TopologyError for duplicates, dangling references and cycles
        self.graph = ResourceGraph(resources)
        self.resources: Dict[str, Any] = {}
        self.targets = {
            descriptor.name: self.lookup(descriptor) for descriptor in self.graph.order()
        }

    def lookup(self, descriptor: AzureResource):
        """Find the resource class or provider function a descriptor names."""
        if descriptor.kind not in KINDS:
            raise ValueError(f"Unknown kind '{descriptor.kind}' for resource '{descriptor.name}'.")

        package = PROVIDERS.get(descriptor.provider)
        if package is None:
            raise ValueError(f"Unknown provider '{descriptor.provider}' for resource '{descriptor.name}'.")

        if "." in descriptor.type:
            module_name, attr_name = descriptor.type.rsplit(".", 1)
            module = getattr(package, module_name, None)
            if module is None:
                raise ValueError(
                    f"Module '{module_name}' not found in provider '{descriptor.provider}' for '{descriptor.name}'."
                )
        else:
            module, attr_name = package, descriptor.type

        target = getattr(module, attr_name, None)
        if target is None:
            raise ValueError(f"'{descriptor.type}' not found in provider '{descriptor.provider}' for '{descriptor.name}'.")
        return target

    def resolve_ref(self, value: str) -> Any:
        # handle "ref:resourceName.attribute[.nested|.index...]"
        ref_res, path = parse_ref(value)
        if ref_res not in self.resources:
            raise ValueError(f"Referenced resource '{ref_res}' not found.")

        resource_obj = self.resources[ref_res]
        attr_val = getattr(resource_obj, path[0], None)
        if attr_val is None:
            raise ValueError(f"Attribute '{path[0]}' not found on resource '{ref_res}'")

        for segment in path[1:]:
            attr_val = pulumi.Output.from_input(attr_val).apply(lambda v, s=segment: _step(v, s))
        return attr_val

    def resolve_args(self, args: Any) -> Any:
        if isinstance(args, dict):
            return {key: self.resolve_args(value) for key, value in args.items()}
        if isinstance(args, (list, tuple)):
            return [self.resolve_args(item) for item in args]
        if isinstance(args, str) and args.startswith(REF_PREFIX):
            return self.resolve_ref(args)
        return args

    def resolve_outputs(self, outputs: Mapping[str, str]) -> Mapping[str, Any]:
        return MappingProxyType({key: self.resolve_args(value) for key, value in outputs.items()})

    def build(self) -> Dict[str, Any]:
        for descriptor in self.graph.order():
            name = descriptor.name
            target = self.targets[name]
            resolved_args = self.resolve_args(descriptor.args)

            if descriptor.kind == "invoke":
                self.resources[name] = target(**resolved_args)
                pulumi.log.info(f"Invoked {descriptor.type} for '{name}'")
                continue

            # Generated resource classes take **kwargs in __init__; the real parameters live on _internal_init
            init_sig = inspect.signature(getattr(target, "_internal_init", target.__init__))

            # Check if resource supports 'tags'
            if "tags" in init_sig.parameters:
                if self.config.tags:
                    resolved_args.setdefault("tags", dict(self.config.tags))
            else:
                resolved_args.pop("tags", None)

            # If resource constructor expects location, ensure it's present or fallback
            if "location" in init_sig.parameters:
                resolved_args.setdefault("location", self.config.location)
            else:
                resolved_args.pop("location", None)

            depends_on = [
                self.resources[dep] for dep in descriptor.depends_on
                if isinstance(self.resources[dep], pulumi.Resource)
            ]
            opts = pulumi.ResourceOptions(depends_on=depends_on) if depends_on else None

            pulumi.log.debug(f"Arguments for '{name}': {sorted(resolved_args)}")

            resource_instance = target(name, opts=opts, **resolved_args)
            self.resources[name] = resource_instance
            pulumi.log.info(f"Created resource: {name} ({descriptor.provider}:{descriptor.type})")

        return self.resources
