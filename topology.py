# topology.py
"""
Resource factories for the RabbitMQ-on-Azure topology.

Every factory is a pure function returning an AzureResource descriptor.
Cross-resource values are expressed as "ref:<resource>.<attribute>"
strings and resolved by the builder, so nothing here talks to Azure.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from config import AzureResource

# The broker process is started this many seconds after the container, so the
# container group's network attachment is in place before RabbitMQ binds.
CONTAINER_STARTUP_DELAY = 60

BROKER_ADDRESS_SPACE = ["10.2.0.0/16"]
VM_ADDRESS_SPACE = ["10.1.0.0/16"]

BROKER_PORTS = [15672, 25672, 5672, 4369]
BROKER_VOLUMES = {
    "vol-rmq-config": "/var/lib/rabbitmq/config",
    "vol-rmq-mnesia": "/var/lib/rabbitmq/mnesia",
    "vol-rmq-schema": "/var/lib/rabbitmq/schema",
}
BROKER_RECORD_NAME = "rmq"
DNS_RECORD_TTL = 300

VM_SIZE = "Standard_B2s"
VM_ADMIN_USERNAME = "adminuser"
VM_IMAGE = {
    "publisher": "Canonical",
    "offer": "UbuntuServer",
    "sku": "16.04-LTS",
    "version": "latest",
}


def ref(name: str, attribute: str = "id") -> str:
    return f"ref:{name}.{attribute}"


@dataclass(frozen=True)
class Topology:
    resources: Tuple[AzureResource, ...]
    outputs: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def resource_group(name: str, location: str) -> AzureResource:
    return AzureResource(name=name, type="resources.ResourceGroup", args={"location": location})


def secret(name: str, length: int, special: bool = True) -> AzureResource:
    """A credential generated at deploy time and kept as a Pulumi secret."""
    args = {"length": length, "special": special}
    if special:
        # Azure VM passwords need one character from each class
        args.update({
            "override_special": "!#%*-_",
            "min_lower": 1,
            "min_upper": 1,
            "min_numeric": 1,
            "min_special": 1,
        })
    return AzureResource(name=name, type="RandomPassword", args=args, provider="random")


def storage_account(name: str, resource_group: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="storage.StorageAccount",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "kind": "StorageV2",
            "sku": {"name": "Standard_LRS"},
        },
    )


def storage_account_keys(account: str, resource_group: str) -> AzureResource:
    return AzureResource(
        name=f"{account}-keys",
        type="storage.list_storage_account_keys_output",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "account_name": ref(account, "name"),
        },
        kind="invoke",
    )


def file_share(name: str, account: str, resource_group: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="storage.FileShare",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "account_name": ref(account, "name"),
        },
    )


def virtual_network(name: str, address_prefixes: List[str], resource_group: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="network.VirtualNetwork",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "address_space": {"address_prefixes": list(address_prefixes)},
        },
    )


def subnet(
    name: str,
    address_prefixes: List[str],
    resource_group: str,
    vnet: str,
    nsg: Optional[str] = None,
) -> AzureResource:
    args = {
        "resource_group_name": ref(resource_group, "name"),
        "virtual_network_name": ref(vnet, "name"),
        "address_prefixes": list(address_prefixes),
    }
    if nsg:
        args["network_security_group"] = {"id": ref(nsg)}
    return AzureResource(name=name, type="network.Subnet", args=args)


def container_subnet(
    name: str,
    address_prefixes: List[str],
    resource_group: str,
    vnet: str,
    nsg: Optional[str] = None,
) -> AzureResource:
    """A subnet delegated to Azure Container Instances."""
    base = subnet(name, address_prefixes, resource_group, vnet, nsg)
    args = dict(base.args)
    args["service_endpoints"] = [{"service": "Microsoft.Storage"}]
    args["delegations"] = [
        {
            "name": f"snet-delegation-{name}",
            "service_name": "Microsoft.ContainerInstance/containerGroups",
        }
    ]
    return AzureResource(name=name, type=base.type, args=args)


def network_profile(name: str, resource_group: str, subnet_name: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="network.NetworkProfile",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "container_network_interface_configurations": [
                {
                    "name": f"{name}-nic",
                    "ip_configurations": [
                        {"name": f"{name}-ipconfig", "subnet": {"id": ref(subnet_name)}},
                    ],
                }
            ],
        },
    )


def broker_command(delay: int = CONTAINER_STARTUP_DELAY) -> List[str]:
    return [
        "/bin/bash",
        "-c",
        f"(sleep {delay} && docker-entrypoint.sh rabbitmq-server) & wait",
    ]


def broker_container(
    name: str,
    resource_group: str,
    account: str,
    account_keys: str,
    subnet_name: str,
    profile: str,
    cookie: str,
    private_dns_zone_name: str,
) -> AzureResource:
    def ports():
        return [{"port": port, "protocol": "TCP"} for port in BROKER_PORTS]

    volumes = [
        {
            "name": volume,
            "azure_file": {
                "share_name": ref(volume, "name"),
                "storage_account_name": ref(account, "name"),
                "storage_account_key": ref(account_keys, "keys.0.value"),
            },
        }
        for volume in BROKER_VOLUMES
    ]
    container = {
        "name": "rabbitmq",
        "image": "rabbitmq",
        "command": broker_command(),
        "resources": {"requests": {"cpu": 1.0, "memory_in_gb": 1.5}},
        "ports": ports(),
        "environment_variables": [
            {"name": "RABBITMQ_ERLANG_COOKIE", "secure_value": ref(cookie, "result")},
            {"name": "RABBITMQ_NODENAME", "value": f"rabbit@{BROKER_RECORD_NAME}.{private_dns_zone_name}"},
            {"name": "RABBITMQ_USE_LONGNAME", "value": "true"},
        ],
        "volume_mounts": [
            {"name": volume, "mount_path": mount_path}
            for volume, mount_path in BROKER_VOLUMES.items()
        ],
    }
    return AzureResource(
        name=name,
        type="containerinstance.ContainerGroup",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "os_type": "Linux",
            "ip_address": {"type": "Private", "ports": ports()},
            "subnet_ids": [{"id": ref(subnet_name)}],
            "containers": [container],
            "volumes": volumes,
        },
        depends_on=[profile],
    )


def public_ip(name: str, resource_group: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="network.PublicIPAddress",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "public_ip_allocation_method": "Dynamic",
        },
    )


def network_interface(name: str, resource_group: str, subnet_name: str, pip: str, nsg: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="network.NetworkInterface",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "ip_configurations": [
                {
                    "name": "internal",
                    "subnet": {"id": ref(subnet_name)},
                    "private_ip_allocation_method": "Dynamic",
                    "public_ip_address": {"id": ref(pip)},
                }
            ],
            "network_security_group": {"id": ref(nsg)},
        },
    )


def network_security_group(name: str, resource_group: str, security_rules: Optional[List[dict]] = None) -> AzureResource:
    """An NSG carrying Azure's default rules, plus any extra rules given."""
    args = {"resource_group_name": ref(resource_group, "name")}
    if security_rules:
        args["security_rules"] = list(security_rules)
    return AzureResource(name=name, type="network.NetworkSecurityGroup", args=args)


def virtual_machine(name: str, resource_group: str, nic: str, admin_password: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="compute.VirtualMachine",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "hardware_profile": {"vm_size": VM_SIZE},
            "network_profile": {"network_interfaces": [{"id": ref(nic), "primary": True}]},
            "os_profile": {
                "computer_name": name,
                "admin_username": VM_ADMIN_USERNAME,
                "admin_password": ref(admin_password, "result"),
                "linux_configuration": {"disable_password_authentication": False},
            },
            "storage_profile": {
                "os_disk": {
                    "caching": "ReadWrite",
                    "create_option": "FromImage",
                    "managed_disk": {"storage_account_type": "Standard_LRS"},
                },
                "image_reference": dict(VM_IMAGE),
            },
        },
    )


def vnet_peering(
    name: str,
    resource_group: str,
    vnet: str,
    remote_vnet: str,
    depends_on: Optional[List[str]] = None,
) -> AzureResource:
    return AzureResource(
        name=name,
        type="network.VirtualNetworkPeering",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "virtual_network_name": ref(vnet, "name"),
            "allow_forwarded_traffic": True,
            "allow_virtual_network_access": True,
            "remote_virtual_network": {"id": ref(remote_vnet)},
        },
        depends_on=list(depends_on or []),
    )


def private_dns_zone(name: str, zone_name: str, resource_group: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="privatedns.PrivateZone",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "private_zone_name": zone_name,
            "location": "Global",
        },
    )


def dns_a_record(name: str, resource_group: str, zone: str, record_name: str, ip_ref: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="privatedns.PrivateRecordSet",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "private_zone_name": ref(zone, "name"),
            "record_type": "A",
            "relative_record_set_name": record_name,
            "ttl": DNS_RECORD_TTL,
            "a_records": [{"ipv4_address": ip_ref}],
        },
    )


def zone_link(name: str, resource_group: str, zone: str, vnet: str) -> AzureResource:
    return AzureResource(
        name=name,
        type="privatedns.VirtualNetworkLink",
        args={
            "resource_group_name": ref(resource_group, "name"),
            "private_zone_name": ref(zone, "name"),
            "location": "global",
            "registration_enabled": False,
            "virtual_network": {"id": ref(vnet)},
        },
    )


def declare_topology(location: str, private_dns_zone_name: str) -> Topology:
    """Declare the full broker + test VM topology.

    Only the resource groups carry `location` explicitly; the builder
    injects the configured location into every other constructor that
    takes one.
    """
    resources = [
        # Resource groups holding the DNS, broker and VM resources.
        resource_group("rg-dns", location),
        resource_group("rg-rmq", location),
        resource_group("rg-vm", location),

        secret("rmq-erlang-cookie", 32, special=False),
        secret("vm-admin-password", 24),

        # Broker persistence.
        storage_account("sarmqsa", "rg-rmq"),
        storage_account_keys("sarmqsa", "rg-rmq"),
        *[file_share(volume, "sarmqsa", "rg-rmq") for volume in BROKER_VOLUMES],

        # Broker networking and container group.
        virtual_network("vnet-rmq", BROKER_ADDRESS_SPACE, "rg-rmq"),
        network_security_group("nsg-rmq", "rg-rmq"),
        container_subnet("snet-rmq", BROKER_ADDRESS_SPACE, "rg-rmq", "vnet-rmq", nsg="nsg-rmq"),
        network_profile("np-rmq", "rg-rmq", "snet-rmq"),
        broker_container(
            "aci-rmq",
            "rg-rmq",
            "sarmqsa",
            "sarmqsa-keys",
            "snet-rmq",
            "np-rmq",
            "rmq-erlang-cookie",
            private_dns_zone_name,
        ),

        # Test VM in its own network.
        virtual_network("vnet-vm", VM_ADDRESS_SPACE, "rg-vm"),
        subnet("snet-vm", VM_ADDRESS_SPACE, "rg-vm", "vnet-vm"),
        public_ip("pip-vm", "rg-vm"),
        network_security_group("nsg-vm", "rg-vm"),
        network_interface("ni-vm", "rg-vm", "snet-vm", "pip-vm", "nsg-vm"),
        virtual_machine("vm-service", "rg-vm", "ni-vm", "vm-admin-password"),

        # Peering both ways; a vnet can't be peered while its subnets are still updating.
        vnet_peering("vnp-vm", "rg-vm", "vnet-vm", "vnet-rmq", depends_on=["snet-vm", "snet-rmq"]),
        vnet_peering("vnp-rmq", "rg-rmq", "vnet-rmq", "vnet-vm", depends_on=["snet-vm", "snet-rmq"]),

        # Private resolution of the broker from both networks.
        private_dns_zone("pdz-rmq", private_dns_zone_name, "rg-dns"),
        dns_a_record("a-rmq", "rg-dns", "pdz-rmq", BROKER_RECORD_NAME, ref("aci-rmq", "ip_address.ip")),
        zone_link("zonelink-rmq", "rg-dns", "pdz-rmq", "vnet-rmq"),
        zone_link("zonelink-vm", "rg-dns", "pdz-rmq", "vnet-vm"),
    ]

    outputs = MappingProxyType({
        "rmqFqdn": ref("a-rmq", "fqdn"),
        "vmIp": ref("pip-vm", "ip_address"),
    })
    return Topology(resources=tuple(resources), outputs=outputs)
