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

import pytest
from click.testing import CliRunner

from modinstall import config, const
from modinstall.main import cmd
from modinstall.registry import PersistentResourceList
from modinstall.resources import InstallableResource


@pytest.fixture
def state_dir() -> str:
    return config.state_dir.get()


@pytest.fixture
def saved_registry(registry) -> PersistentResourceList:
    registry.add_or_update(
        InstallableResource(
            url="res:a", digest="0123456789abcdef", resource_type="bundle", entity_id="A", dictionary={"version": "1.0"}
        )
    )
    registry.add_or_update(
        InstallableResource(url="res:a2", digest="fedcba9876543210", resource_type="bundle", entity_id="A", priority=10)
    )
    registry.add_or_update(InstallableResource(url="res:f", digest="abcdef0123456789", resource_type="file"))
    registry.save()
    return registry


def invoke(state_dir: str, *args: str):
    runner = CliRunner()
    return runner.invoke(cmd, ["--state-dir", state_dir, *args])


def test_registry_list(clean_logger_config, state_dir, saved_registry):
    result = invoke(state_dir, "registry", "list")

    assert result.exit_code == 0, result.output
    assert "Active resource" in result.output
    assert "res:a " in result.output
    assert "registered" in result.output


def test_registry_list_empty(clean_logger_config, state_dir):
    result = invoke(state_dir, "registry", "list")

    assert result.exit_code == 0, result.output
    assert "No entities registered" in result.output


def test_registry_show(clean_logger_config, state_dir, saved_registry):
    result = invoke(state_dir, "registry", "show", "A")

    assert result.exit_code == 0, result.output
    assert "res:a2" in result.output
    assert "0123456789ab" in result.output
    assert "0123456789abcdef" not in result.output
    assert "1.0" in result.output


def test_registry_show_unknown(clean_logger_config, state_dir):
    result = invoke(state_dir, "registry", "show", "B")

    assert result.exit_code != 0
    assert "Entity B is not registered" in result.output


def test_registry_untransformed(clean_logger_config, state_dir, saved_registry):
    result = invoke(state_dir, "registry", "untransformed")

    assert result.exit_code == 0, result.output
    assert "res:f" in result.output
    assert "file" in result.output


def test_registry_compact(clean_logger_config, state_dir, registry_file, saved_registry):
    result = invoke(state_dir, "registry", "compact")
    assert result.exit_code == 0, result.output
    assert "Nothing to compact" in result.output

    saved_registry.get_entity_resource_list("A").get_active_resource().state = const.ResourceState.uninstalled
    saved_registry.save()

    result = invoke(state_dir, "registry", "compact")
    assert result.exit_code == 0, result.output
    assert "Registry compacted" in result.output

    restored = PersistentResourceList(registry_file)
    assert [r.url for r in restored.get_entity_resource_list("A").get_resources()] == ["res:a2"]


def test_log_file(clean_logger_config, tmp_path, state_dir):
    with open(config.get_registry_path(), "w", encoding="utf-8") as fh:
        fh.write('{"version": 3, "data": {}}')
    log_file = tmp_path / "cli.log"

    result = invoke(state_dir, "--log-file", str(log_file), "--log-file-level", "WARNING", "registry", "list")

    assert result.exit_code == 0, result.output
    assert "No entities registered" in result.output
    assert "Unable to restore data, starting with empty list" in log_file.read_text()
