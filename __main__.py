# main.py
import pulumi
from azurenative import AzureResourceBuilder
from config import dump_resources, load_config, load_resources_file
from topology import declare_topology

def main():
    config = load_config()

    topology = declare_topology(config.location, config.private_dns_zone_name)
    resources = list(topology.resources)
    if config.extra_resources_file:
        resources.extend(load_resources_file(config.extra_resources_file))

    pulumi.log.debug(f"Declared resources:\n{dump_resources(resources)}")

    try:
        builder = AzureResourceBuilder(config, resources)
    except Exception as e:
        pulumi.log.error(f"Invalid resource configuration: {e}")
        raise

    # Build resources
    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    for name, value in builder.resolve_outputs(topology.outputs).items():
        pulumi.export(name, value)

if __name__ == "__main__":
    main()
