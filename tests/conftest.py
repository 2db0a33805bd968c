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

import pytest

from installer_mocks import DummyRuntime, DummyStartLevelService
from modinstall import config
from modinstall.config import Config
from modinstall.datastore import FileDataStore
from modinstall.logging import InstallerLoggerConfig
from modinstall.registry import PersistentResourceList


@pytest.fixture(scope="function", autouse=True)
def modinstall_config(tmp_path):
    """
    Start every test from a clean config that keeps all state in the test's temporary directory.
    """
    Config._reset()
    Config.load_config(main_cfg_file=os.path.join(str(tmp_path), "modinstall.cfg"))
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    config.state_dir.set(str(state_dir))
    yield Config
    Config._reset()


@pytest.fixture
def clean_logger_config():
    root_log_level = logging.root.level
    InstallerLoggerConfig.clean_instance()
    yield
    InstallerLoggerConfig.clean_instance()
    # Make sure we maintain the initial root log level, so that logging in pytest works as expected.
    logging.root.setLevel(root_log_level)


@pytest.fixture
def registry_file(modinstall_config) -> str:
    return config.get_registry_path()


@pytest.fixture
def data_store(modinstall_config) -> FileDataStore:
    return FileDataStore(config.data_dir.get())


@pytest.fixture
def registry(registry_file, data_store) -> PersistentResourceList:
    return PersistentResourceList(registry_file, data_store)


@pytest.fixture
def runtime() -> DummyRuntime:
    return DummyRuntime()


@pytest.fixture
def start_level_service() -> DummyStartLevelService:
    return DummyStartLevelService()
