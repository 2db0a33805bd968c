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
import functools
import logging
import math
from typing import Optional

from modinstall import const, installer
from modinstall.exceptions import InvalidResourceMetadata
from modinstall.registry import EntityResourceList
from modinstall.resources import RegisteredResource
from modinstall.runtime import Artifact, ArtifactState
from modinstall.types import ArtifactId

LOGGER = logging.getLogger(__name__)


@functools.total_ordering
class InstallerTask(abc.ABC):
    """
    A unit of work of an installer cycle. Tasks are executed in the order of their sort key.

    A task is bound to an entity group and acts on its active resource. Tasks without a group are continuation tasks:
    nothing in the registry recreates them, so they must reschedule themselves to be retried.

    Closely coupled with installer.InstallationContext. Concrete implementations must respect its contract.
    """

    def __init__(self, group: Optional[EntityResourceList]) -> None:
        self.group = group
        # The active resource is pinned when the task is created: tasks must keep acting on the same resource
        self._resource: Optional[RegisteredResource] = group.get_active_resource() if group is not None else None

    @property
    def resource(self) -> Optional[RegisteredResource]:
        return self._resource

    @property
    @abc.abstractmethod
    def sort_key(self) -> str:
        pass

    @abc.abstractmethod
    async def execute(self, context: "installer.InstallationContext") -> None:
        pass

    def set_finished_state(self, state: const.ResourceState) -> None:
        if self._resource is not None:
            self._resource.state = state

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InstallerTask):
            return NotImplemented
        return self.sort_key == other.sort_key

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, InstallerTask):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __hash__(self) -> int:
        return hash(self.sort_key)

    def __str__(self) -> str:
        return f"{type(self).__name__}: {self._resource}"


def get_start_level(resource: RegisteredResource) -> int:
    """
    Returns the start level declared by the resource, 0 if it declares none.

    :raises InvalidResourceMetadata: When the declared start level is not a number.
    """
    provided = resource.dictionary.get(const.PROPERTY_START_LEVEL)
    if provided is None:
        return 0
    if isinstance(provided, bool):
        raise InvalidResourceMetadata(resource.url, const.PROPERTY_START_LEVEL, provided)
    if isinstance(provided, float) and not math.isfinite(provided):
        raise InvalidResourceMetadata(resource.url, const.PROPERTY_START_LEVEL, provided)
    if isinstance(provided, (int, float)):
        return int(provided)
    try:
        return int(str(provided).strip())
    except ValueError:
        raise InvalidResourceMetadata(resource.url, const.PROPERTY_START_LEVEL, provided)


class InstallTask(InstallerTask):
    """
    Install the content of a resource in the host runtime and start it in the same cycle.
    """

    @property
    def sort_key(self) -> str:
        assert self._resource is not None
        return const.INSTALL_ORDER + self._resource.url

    async def execute(self, context: "installer.InstallationContext") -> None:
        resource = self._resource
        assert resource is not None, "Install task without a resource"
        start_level = get_start_level(resource)

        try:
            stream = resource.open_content()
            try:
                artifact: Artifact = await context.runtime.install(resource.url, stream)
            finally:
                if stream is not None:
                    stream.close()
            context.log("Installed artifact %s from resource %s", artifact, resource)

            if start_level > 0:
                if context.start_level_service is not None:
                    context.start_level_service.set_start_level(artifact, start_level)
                else:
                    LOGGER.warning(
                        "Ignoring start level %d for artifact %s - start level service not available.", start_level, artifact
                    )

            # mark this resource as installed and to be started
            resource.attributes[const.ATTR_START] = "true"
            resource.attributes[const.ATTR_ARTIFACT_ID] = artifact.artifact_id
            context.add_task_to_current_cycle(StartTask(self.group, artifact.artifact_id))
        except Exception as e:
            # The resource stays registered, it will be installed again in the next cycle
            LOGGER.info("Exception during install of resource %s: %s. Retrying later.", resource, e, exc_info=True)


class StartTask(InstallerTask):
    """
    Start an installed artifact.

    When the artifact fails to start, the task is retried, but not in a tight loop: the first retry happens in the next
    cycle, every following retry waits until the host runtime emitted at least one new lifecycle event since the last
    attempt. The retry state is kept in the temporary attributes of the resource, or in the task itself for continuation
    tasks.
    """

    def __init__(self, group: Optional[EntityResourceList], artifact_id: ArtifactId) -> None:
        super().__init__(group)
        self.artifact_id = artifact_id
        self.retry_count: int = 0
        self.events_count_for_retrying: int = 0
        resource = self._resource
        if resource is not None and resource.get_temporary_attribute(const.ATTR_RETRY_COUNT) is not None:
            self.retry_count = int(resource.get_temporary_attribute(const.ATTR_RETRY_COUNT))
            self.events_count_for_retrying = int(resource.get_temporary_attribute(const.ATTR_EVENTS_COUNT) or 0)

    @property
    def sort_key(self) -> str:
        return f"{const.START_ORDER}{self.artifact_id:0{const.START_ORDER_ID_WIDTH}d}"

    def __str__(self) -> str:
        return f"{type(self).__name__}: artifact {self.artifact_id}"

    def set_finished_state(self, state: const.ResourceState) -> None:
        super().set_finished_state(state)
        if self._resource is not None:
            self._resource.set_temporary_attribute(const.ATTR_RETRY_COUNT, None)
            self._resource.set_temporary_attribute(const.ATTR_EVENTS_COUNT, None)

    async def execute(self, context: "installer.InstallationContext") -> None:
        if self.artifact_id == const.SYSTEM_ARTIFACT_ID:
            LOGGER.debug("Artifact %d is the system artifact, ignoring request to start it", self.artifact_id)
            self.set_finished_state(const.ResourceState.installed)
            return

        # Do not execute this task if waiting for events
        events_count = context.runtime.get_total_events_count()
        if events_count < self.events_count_for_retrying:
            LOGGER.debug(
                "Task is not executable at this time, counters=%d/%d", self.events_count_for_retrying, events_count
            )
            if self._resource is None:
                context.add_task_to_next_cycle(self)
            return

        artifact = context.runtime.get_artifact(self.artifact_id)
        if artifact is None:
            LOGGER.info("Cannot start artifact, id not found: %d", self.artifact_id)
            if self._resource is not None:
                # Install again in the next cycle
                self._resource.attributes.pop(const.ATTR_START, None)
                self._resource.attributes.pop(const.ATTR_ARTIFACT_ID, None)
                self._resource.set_temporary_attribute(const.ATTR_RETRY_COUNT, None)
                self._resource.set_temporary_attribute(const.ATTR_EVENTS_COUNT, None)
            return

        if artifact.get_state() == ArtifactState.active:
            LOGGER.debug("Artifact already started, no action taken: %s", artifact)
            self.set_finished_state(const.ResourceState.installed)
            return

        # Try to start the artifact, and if that doesn't work we'll need to retry
        try:
            await artifact.start()
        except Exception as e:
            LOGGER.info(
                "Could not start artifact (retry count=%d, artifact ID=%d) : %s. Reason: %s. Will retry.",
                self.retry_count,
                self.artifact_id,
                artifact.symbolic_name,
                e,
            )
            # First failure: eligible again in the next cycle. Later failures: wait for at least one new lifecycle event.
            if self.retry_count == 0:
                self.events_count_for_retrying = context.runtime.get_total_events_count()
            else:
                self.events_count_for_retrying = context.runtime.get_total_events_count() + 1
            self.retry_count += 1
            if self._resource is None:
                context.add_task_to_next_cycle(self)
            else:
                self._resource.set_temporary_attribute(const.ATTR_RETRY_COUNT, self.retry_count)
                self._resource.set_temporary_attribute(const.ATTR_EVENTS_COUNT, self.events_count_for_retrying)
            return

        self.set_finished_state(const.ResourceState.installed)
        LOGGER.info(
            "Artifact started (retry count=%d, artifact ID=%d) : %s", self.retry_count, self.artifact_id, artifact.symbolic_name
        )


def create_task(group: EntityResourceList, artifact_type: str) -> Optional[InstallerTask]:
    """
    Create the task that brings the active resource of the given group one step closer to being installed, or None when
    there is nothing to do.
    """
    resource = group.get_active_resource()
    if resource is None or resource.resource_type != artifact_type:
        return None
    if resource.state != const.ResourceState.registered:
        return None
    artifact_id = resource.attributes.get(const.ATTR_ARTIFACT_ID)
    if resource.attributes.get(const.ATTR_START) == "true" and artifact_id is not None:
        return StartTask(group, int(artifact_id))
    return InstallTask(group)
