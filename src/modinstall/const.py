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

from enum import Enum


class ResourceState(str, Enum):
    """
    Lifecycle state of a registered resource.
    """

    registered = "registered"  # Known to the installer, not (yet) installed
    transforming = "transforming"  # Handed to the transformers, type not decided yet
    installed = "installed"
    ignored = "ignored"  # Will not be acted upon, e.g. because its metadata is invalid
    uninstalled = "uninstalled"


# states in which a resource can not be the active resource of its entity group
INACTIVE_STATES = [ResourceState.ignored, ResourceState.uninstalled]


class ResourceType(str, Enum):
    """
    Raw resource types. Resources of these types have not been transformed into an installable type yet.
    """

    file = "file"
    properties = "properties"


RAW_RESOURCE_TYPES = [ResourceType.file.value, ResourceType.properties.value]

DEFAULT_ARTIFACT_TYPE = "bundle"

# Higher priority wins within an entity group
DEFAULT_PRIORITY = 100

# Declared property holding the requested start level of an artifact
PROPERTY_START_LEVEL = "installer.start-level"
# Declared property or attribute holding the version of an artifact
PROPERTY_VERSION = "version"

# Persistent attributes set by the install task
ATTR_START = "install:start"
ATTR_ARTIFACT_ID = "install:artifact-id"

# Temporary attributes owned by the start task
ATTR_RETRY_COUNT = "start:retry-count"
ATTR_EVENTS_COUNT = "start:events-count"

# Task sort keys: all installs sort before all starts
INSTALL_ORDER = "50-"
START_ORDER = "70-"
START_ORDER_ID_WIDTH = 5

# Identity of the root artifact of the host runtime, it can never be started
SYSTEM_ARTIFACT_ID = 0

# Version of the registry snapshot format written by this code base
SNAPSHOT_VERSION = 2

ENVIRON_FORCE_TTY = "MODINSTALL_FORCE_TTY"

LOG_LEVEL_TRACE = 3
