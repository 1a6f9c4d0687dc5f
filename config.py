# config.py
"""
This module defines the data structures for our configuration and the
loaders that fill them from the Pulumi stack configuration and from
optional YAML resource files.
"""

import yaml
import pulumi
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

DEFAULT_PROVIDER = "azure-native"

@dataclass(frozen=True)
class AzureResource:
    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    provider: str = DEFAULT_PROVIDER
    # "resource" creates a resource, "invoke" calls a provider function
    kind: str = "resource"

@dataclass(frozen=True)
class Config:
    location: str
    private_dns_zone_name: str
    tags: Dict[str, str] = field(default_factory=dict)
    extra_resources_file: Optional[str] = None

def load_config(stack_config: Optional[pulumi.Config] = None) -> Config:
    """Read the stack configuration. `location` and `privateDnsZoneName` are required."""
    stack_config = stack_config or pulumi.Config()
    return Config(
        location=stack_config.require("location"),
        private_dns_zone_name=stack_config.require("privateDnsZoneName"),
        tags=stack_config.get_object("tags") or {},
        extra_resources_file=stack_config.get("extraResourcesFile"),
    )

def load_resources_file(file_path: str) -> List[AzureResource]:
    """Load and validate additional resource descriptors from a YAML file."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}

    if not isinstance(config_data, dict):
        raise ValueError(f"Expected a mapping with an 'azure_resources' key in {file_path}")
    azure_resources = config_data.get("azure_resources") or []
    if not isinstance(azure_resources, list):
        raise ValueError(f"'azure_resources' must be a list in {file_path}")

    resources = []
    for index, resource_cfg in enumerate(azure_resources):
        if not isinstance(resource_cfg, dict):
            raise ValueError(f"azure_resources[{index}] in {file_path} is not a mapping")
        # Ensure required keys exist
        for key in ("name", "type"):
            if key not in resource_cfg:
                raise ValueError(f"Missing required key '{key}' in azure_resources[{index}] of {file_path}")

        resources.append(
            AzureResource(
                name=resource_cfg["name"],
                type=resource_cfg["type"],
                args=resource_cfg.get("args") or {},
                depends_on=list(resource_cfg.get("depends_on") or []),
                provider=resource_cfg.get("provider", DEFAULT_PROVIDER),
                kind=resource_cfg.get("kind", "resource"),
            )
        )

    pulumi.log.debug(f"Loaded {len(resources)} extra resource(s) from {file_path}")
    return resources

class _PlanDumper(yaml.SafeDumper):
    # shared sub-structures are written out in full, never as &anchors
    def ignore_aliases(self, data):
        return True

def dump_resources(resources: List[AzureResource]) -> str:
    """Render descriptors in the same YAML layout `load_resources_file` reads."""
    return yaml.dump(
        {"azure_resources": [asdict(resource) for resource in resources]},
        Dumper=_PlanDumper,
        sort_keys=False,
    )
