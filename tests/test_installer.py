"""
Copyright 2024 Inmanta

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.

Contact: code@inmanta.com
"""

import logging
import os

from installer_mocks import FAIL_ALWAYS, StaticTransformer
from modinstall import config, const
from modinstall.datastore import FileDataStore
from modinstall.installer import Installer
from modinstall.registry import PersistentResourceList
from modinstall.resources import InstallableResource, RegisteredResource, TransformationResult
from modinstall.runtime import ArtifactState
from utils import LogSequence, log_contains


def bundle(url: str, entity_id: str, digest: str = "d1", **kwargs) -> InstallableResource:
    return InstallableResource(url=url, digest=digest, resource_type="bundle", entity_id=entity_id, **kwargs)


def active(registry: PersistentResourceList, entity_id: str) -> RegisteredResource:
    group = registry.get_entity_resource_list(entity_id)
    assert group is not None
    resource = group.get_active_resource()
    assert resource is not None
    return resource


async def test_full_cycle(registry, registry_file, runtime, start_level_service, caplog):
    caplog.set_level(logging.INFO)
    transformer = StaticTransformer({"res:a": [TransformationResult(resource_type="bundle", entity_id="A", version="1.2")]})
    installer = Installer(registry, runtime, transformers=[transformer], start_level_service=start_level_service)
    installer.register(
        [
            InstallableResource(url="res:a", resource_type="file", content=b"bundle a"),
            bundle("res:b", "B", dictionary={const.PROPERTY_START_LEVEL: "3"}),
        ]
    )

    assert await installer.run_cycle()

    assert transformer.seen == ["res:a"]
    assert registry.get_untransformed_resources() == []
    assert sorted(registry.get_entity_ids()) == ["A", "B"]
    for entity_id in ["A", "B"]:
        resource = active(registry, entity_id)
        assert resource.state == const.ResourceState.installed
        assert runtime.artifacts[resource.attributes[const.ATTR_ARTIFACT_ID]].state == ArtifactState.active
    assert runtime.artifacts[1].content == b"bundle a"
    assert start_level_service.levels == {2: 3}
    assert os.path.exists(registry_file)

    # installs run before starts
    (
        LogSequence(caplog)
        .contains("modinstall.installer", logging.INFO, "Installed artifact res:a [1]")
        .contains("modinstall.installer", logging.INFO, "Installed artifact res:b [2]")
        .contains("modinstall.tasks", logging.INFO, "Artifact started (retry count=0, artifact ID=1)")
        .contains("modinstall.tasks", logging.INFO, "Artifact started (retry count=0, artifact ID=2)")
        .no_more_errors()
    )

    # nothing left to do
    assert not await installer.run_cycle()
    assert runtime.install_count == 2


async def test_event_gated_retries(registry, runtime):
    runtime.start_failures["res:a"] = 3
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])

    await installer.run_cycle()
    artifact = runtime.artifacts[1]
    assert artifact.start_count == 1

    # the first retry happens in the next cycle
    await installer.run_cycle()
    assert artifact.start_count == 2

    # further retries wait for a lifecycle event
    for _ in range(3):
        await installer.run_cycle()
    assert artifact.start_count == 2
    assert active(registry, "A").state == const.ResourceState.registered

    runtime.events.increment()
    await installer.run_cycle()
    assert artifact.start_count == 3
    await installer.run_cycle()
    assert artifact.start_count == 3

    runtime.events.increment()
    await installer.run_cycle()
    assert artifact.start_count == 4
    assert artifact.state == ArtifactState.active
    resource = active(registry, "A")
    assert resource.state == const.ResourceState.installed
    assert resource.temporary_attributes == {}
    assert runtime.install_count == 1


async def test_retry_state_survives_restart(registry, registry_file, data_store, runtime):
    runtime.start_failures["res:a"] = 2
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])
    await installer.run_cycle()
    await installer.run_cycle()
    assert runtime.artifacts[1].start_count == 2

    restored = PersistentResourceList(registry_file, FileDataStore(data_store.directory))
    resource = active(restored, "A")
    assert resource.attributes[const.ATTR_START] == "true"
    assert resource.get_temporary_attribute(const.ATTR_RETRY_COUNT) == 2
    assert resource.get_temporary_attribute(const.ATTR_EVENTS_COUNT) == 2

    installer = Installer(restored, runtime)
    # still waiting for an event
    await installer.run_cycle()
    assert runtime.artifacts[1].start_count == 2

    runtime.events.increment()
    await installer.run_cycle()
    assert runtime.artifacts[1].state == ArtifactState.active
    assert active(restored, "A").state == const.ResourceState.installed
    assert runtime.install_count == 1


async def test_invalid_metadata_ignores_resource(registry, runtime, caplog):
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A", dictionary={const.PROPERTY_START_LEVEL: "first"}), bundle("res:b", "B")])

    assert await installer.run_cycle()

    log_contains(caplog, "modinstall.installer", logging.ERROR, "Ignoring resource, task InstallTask")
    assert runtime.install_count == 1
    assert registry.get_entity_ids() == ["B"]
    assert active(registry, "B").state == const.ResourceState.installed


async def test_install_is_retried(registry, runtime):
    runtime.fail_install["res:a"] = 1
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])

    await installer.run_cycle()
    assert runtime.artifacts == {}
    assert active(registry, "A").state == const.ResourceState.registered

    await installer.run_cycle()
    assert runtime.install_count == 2
    assert active(registry, "A").state == const.ResourceState.installed


async def test_install_keeps_failing(registry, runtime):
    runtime.fail_install["res:a"] = FAIL_ALWAYS
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])

    for _ in range(3):
        await installer.run_cycle()
    assert runtime.install_count == 3
    assert registry.get_entity_ids() == ["A"]


async def test_active_resource_is_installed(registry, runtime):
    installer = Installer(registry, runtime)
    installer.register(
        [
            bundle("res:old", "A", dictionary={const.PROPERTY_VERSION: "1.0"}),
            bundle("res:new", "A", dictionary={const.PROPERTY_VERSION: "2.0"}),
        ]
    )

    await installer.run_cycle()

    assert runtime.install_count == 1
    assert active(registry, "A").url == "res:new"
    assert runtime.artifacts[1].symbolic_name == "res:new"


async def test_unregister(registry, runtime):
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A"), bundle("res:b", "B")])
    await installer.run_cycle()

    installer.unregister("res:a")

    assert await installer.run_cycle()
    assert registry.get_entity_ids() == ["B"]


async def test_transformers(registry, runtime, caplog):
    class BrokenTransformer:
        def transform(self, resource):
            raise RuntimeError("broken")

    declining = StaticTransformer({})
    accepting = StaticTransformer({"res:a": [TransformationResult(resource_type="bundle", entity_id="A")]})
    installer = Installer(registry, runtime, transformers=[BrokenTransformer(), declining, accepting])
    installer.register(
        [
            InstallableResource(url="res:a", resource_type="file", digest="d1"),
            InstallableResource(url="res:unknown", resource_type="properties", digest="d2"),
        ]
    )

    await installer.run_cycle()

    log_contains(caplog, "modinstall.installer", logging.WARNING, "Transformer")
    assert declining.seen == ["res:a", "res:unknown"]
    assert accepting.seen == ["res:a", "res:unknown"]
    [untransformed] = registry.get_untransformed_resources()
    assert untransformed.url == "res:unknown"
    assert untransformed.state == const.ResourceState.registered
    assert active(registry, "A").state == const.ResourceState.installed


async def test_only_configured_artifact_type_is_installed(registry, runtime):
    config.artifact_type.set("feature")
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A"), InstallableResource(url="res:f", digest="d2", resource_type="feature", entity_id="F")])

    await installer.run_cycle()

    assert runtime.install_count == 1
    assert runtime.artifacts[1].symbolic_name == "res:f"
    assert active(registry, "A").state == const.ResourceState.registered


async def test_save_on_change_disabled(registry, registry_file, runtime):
    config.save_on_change.set("false")
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])

    assert await installer.run_cycle()

    assert not os.path.exists(registry_file)


async def test_waiting_for_event_does_not_save(registry, registry_file, runtime):
    runtime.start_failures["res:a"] = FAIL_ALWAYS
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])

    assert await installer.run_cycle()
    assert await installer.run_cycle()
    assert runtime.artifacts[1].start_count == 2
    os.remove(registry_file)

    # the start task only waits for a lifecycle event, nothing changed
    assert not await installer.run_cycle()
    assert runtime.artifacts[1].start_count == 2
    assert not os.path.exists(registry_file)

    runtime.events.increment()
    assert await installer.run_cycle()
    assert runtime.artifacts[1].start_count == 3
    assert os.path.exists(registry_file)


async def test_vanished_artifact_is_installed_again(registry, runtime):
    runtime.start_failures["res:a"] = FAIL_ALWAYS
    installer = Installer(registry, runtime)
    installer.register([bundle("res:a", "A")])
    await installer.run_cycle()
    assert active(registry, "A").attributes[const.ATTR_ARTIFACT_ID] == 1

    # removed from the host runtime behind the installer's back
    del runtime.artifacts[1]
    runtime.start_failures["res:a"] = 0
    assert await installer.run_cycle()
    resource = active(registry, "A")
    assert const.ATTR_START not in resource.attributes
    assert resource.temporary_attributes == {}

    await installer.run_cycle()
    assert runtime.install_count == 2
    assert runtime.artifacts[2].state == ArtifactState.active
    resource = active(registry, "A")
    assert resource.state == const.ResourceState.installed
    assert resource.attributes[const.ATTR_ARTIFACT_ID] == 2
