import pulumi
import pytest

from azurenative import AzureResourceBuilder
from config import AzureResource, dump_resources, load_config, load_resources_file
from graph import MissingReferenceError, ResourceGraph
from conftest import PROJECT

EXTRA_RESOURCES = """
azure_resources:
  - name: nsg-extra
    type: network.NetworkSecurityGroup
    args:
      resource_group_name: ref:rg-rmq.name
  - name: extra-password
    type: RandomPassword
    provider: random
    args:
      length: 16
    depends_on:
      - nsg-extra
"""


class TestLoadResourcesFile:
    def test_loads_descriptors(self, tmp_path):
        path = tmp_path / "extra.yaml"
        path.write_text(EXTRA_RESOURCES)

        resources = load_resources_file(str(path))

        assert resources == [
            AzureResource(
                name="nsg-extra",
                type="network.NetworkSecurityGroup",
                args={"resource_group_name": "ref:rg-rmq.name"},
            ),
            AzureResource(
                name="extra-password",
                type="RandomPassword",
                args={"length": 16},
                depends_on=["nsg-extra"],
                provider="random",
            ),
        ]

    def test_missing_type_is_rejected(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("azure_resources:\n  - name: orphan\n")

        with pytest.raises(ValueError, match="Missing required key 'type'"):
            load_resources_file(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_resources_file(str(path)) == []

    def test_dump_is_readable_by_loader(self, tmp_path, topology):
        path = tmp_path / "plan.yaml"
        path.write_text(dump_resources(list(topology.resources)))

        assert load_resources_file(str(path)) == list(topology.resources)


class TestLoadConfig:
    def test_reads_stack_configuration(self):
        pulumi.runtime.set_all_config({
            f"{PROJECT}:location": "uksouth",
            f"{PROJECT}:privateDnsZoneName": "mq.internal",
            f"{PROJECT}:tags": '{"owner": "messaging"}',
        })

        config = load_config()

        assert config.location == "uksouth"
        assert config.private_dns_zone_name == "mq.internal"
        assert config.tags == {"owner": "messaging"}
        assert config.extra_resources_file is None

    def test_missing_location_raises_config_error(self):
        with pytest.raises(pulumi.ConfigMissingError, match="location"):
            load_config(pulumi.Config("unconfigured-stack"))

    def test_missing_zone_name_raises_config_error(self):
        pulumi.runtime.set_all_config({"partial-stack:location": "westeurope"})

        with pytest.raises(pulumi.ConfigMissingError, match="privateDnsZoneName"):
            load_config(pulumi.Config("partial-stack"))


class TestMalformedResourcesFile:
    def test_top_level_list_is_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- name: nsg-extra\n  type: network.NetworkSecurityGroup\n")

        with pytest.raises(ValueError, match="Expected a mapping"):
            load_resources_file(str(path))

    def test_non_mapping_entry_is_rejected(self, tmp_path):
        path = tmp_path / "strings.yaml"
        path.write_text("azure_resources:\n  - nametype\n")

        with pytest.raises(ValueError, match=r"azure_resources\[0\].*not a mapping"):
            load_resources_file(str(path))

    def test_azure_resources_must_be_a_list(self, tmp_path):
        path = tmp_path / "scalar.yaml"
        path.write_text("azure_resources: nsg-extra\n")

        with pytest.raises(ValueError, match="must be a list"):
            load_resources_file(str(path))


class TestExtraResourcesJoinTopology:
    def test_extras_are_ordered_after_the_topology_resources_they_reference(self, tmp_path, topology, stack_config):
        path = tmp_path / "extra.yaml"
        path.write_text(EXTRA_RESOURCES)
        resources = list(topology.resources) + load_resources_file(str(path))

        names = [r.name for r in ResourceGraph(resources).order()]

        assert names.index("rg-rmq") < names.index("nsg-extra") < names.index("extra-password")
        builder = AzureResourceBuilder(stack_config, resources)
        assert set(builder.targets) == {r.name for r in resources}

    def test_extras_referencing_unknown_resources_are_rejected(self, tmp_path, topology):
        path = tmp_path / "extra.yaml"
        path.write_text(EXTRA_RESOURCES.replace("ref:rg-rmq.name", "ref:rg-missing.name"))
        resources = list(topology.resources) + load_resources_file(str(path))

        with pytest.raises(MissingReferenceError, match="rg-missing"):
            ResourceGraph(resources)


class TestDumpResources:
    def test_plan_has_no_yaml_aliases(self, topology):
        shared = [{"port": 5672, "protocol": "TCP"}]
        resource = AzureResource(name="aci", type="containerinstance.ContainerGroup", args={"a": shared, "b": shared})

        for plan in (dump_resources(list(topology.resources)), dump_resources([resource])):
            assert "&id" not in plan
            assert "*id" not in plan
