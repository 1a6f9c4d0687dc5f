"""
Shared fixtures. Pulumi mocks are installed at import time so every
resource created by the tests is answered locally instead of by Azure.
"""

import pulumi
import pytest

PROJECT = "rabbitmq-azure"
LOCATION = "westeurope"
ZONE_NAME = "rmq.internal"
BROKER_IP = "10.2.0.4"
VM_PUBLIC_IP = "20.50.1.10"
STORAGE_KEY = "bW9jay1zdG9yYWdlLWtleQ=="


class AzureMocks(pulumi.runtime.Mocks):
    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        outputs = dict(args.inputs)
        if args.typ == "azure-native:containerinstance:ContainerGroup":
            outputs["ipAddress"] = {**outputs.get("ipAddress", {}), "ip": BROKER_IP}
        elif args.typ == "azure-native:privatedns:PrivateRecordSet":
            outputs["fqdn"] = f"{outputs['relativeRecordSetName']}.{ZONE_NAME}."
        elif args.typ == "azure-native:network:PublicIPAddress":
            outputs["ipAddress"] = VM_PUBLIC_IP
        elif args.typ == "random:index/randomPassword:RandomPassword":
            outputs["result"] = f"generated-{args.name}"
        outputs.setdefault("name", args.name)
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        if args.token == "azure-native:storage:listStorageAccountKeys":
            return {"keys": [{"keyName": "key1", "permissions": "Full", "value": STORAGE_KEY}]}
        return {}


pulumi.runtime.set_mocks(AzureMocks(), project=PROJECT, stack="test", preview=False)


@pytest.fixture
def topology():
    from topology import declare_topology

    return declare_topology(LOCATION, ZONE_NAME)


@pytest.fixture
def stack_config():
    from config import Config

    return Config(location=LOCATION, private_dns_zone_name=ZONE_NAME, tags={"team": "platform"})
