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

import abc
import threading
from enum import Enum
from typing import BinaryIO, Optional

from modinstall.types import ArtifactId, ResourceUrlStr


class EventCounter:
    """
    Monotonically rising count of the lifecycle events emitted by the host runtime.

    The counter is incremented by the event delivery thread of the host runtime and read by the installer thread. Writers
    serialize on a lock, readers never block.
    """

    def __init__(self, initial: int = 0) -> None:
        self._value = initial
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def increment(self, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError("The event counter can only rise")
        with self._lock:
            self._value += amount
            return self._value


class ArtifactState(str, Enum):
    installed = "installed"
    resolved = "resolved"
    starting = "starting"
    active = "active"
    stopping = "stopping"
    uninstalled = "uninstalled"


class Artifact(abc.ABC):
    """
    An artifact installed in the host runtime.
    """

    artifact_id: ArtifactId
    symbolic_name: str

    @abc.abstractmethod
    def get_state(self) -> ArtifactState:
        pass

    @abc.abstractmethod
    async def start(self) -> None:
        """
        Start the artifact.

        :raises ArtifactException: When the artifact can not be started (yet), e.g. because of a missing dependency.
        """
        pass

    def __str__(self) -> str:
        return f"{self.symbolic_name} [{self.artifact_id}]"


class ModuleRuntime(abc.ABC):
    """
    The module management runtime that loads and starts the artifacts.
    """

    events: EventCounter

    @abc.abstractmethod
    async def install(self, url: ResourceUrlStr, content: Optional[BinaryIO]) -> Artifact:
        """
        Install an artifact from the given content.

        :raises ArtifactException: When the runtime rejects the artifact.
        """
        pass

    @abc.abstractmethod
    def get_artifact(self, artifact_id: ArtifactId) -> Optional[Artifact]:
        """
        Returns the artifact with the given id, or None if no such artifact is installed.
        """
        pass

    def get_total_events_count(self) -> int:
        return self.events.value


class StartLevelService(abc.ABC):
    """
    Optional facility of the host runtime to assign start levels to artifacts.
    """

    @abc.abstractmethod
    def set_start_level(self, artifact: Artifact, start_level: int) -> None:
        pass
