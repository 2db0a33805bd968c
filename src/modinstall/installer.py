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
import heapq
import logging
from collections.abc import Sequence
from typing import Optional, Protocol

from modinstall import config, const, tasks
from modinstall.exceptions import InvalidResourceMetadata
from modinstall.registry import PersistentResourceList
from modinstall.resources import InstallableResource, RegisteredResource, TransformationResult
from modinstall.runtime import ModuleRuntime, StartLevelService
from modinstall.types import ResourceUrlStr

LOGGER = logging.getLogger(__name__)


class InstallationContext(abc.ABC):
    """
    Interface offered to tasks while they execute: access to the host runtime and scheduling of follow-up tasks.
    """

    runtime: ModuleRuntime
    start_level_service: Optional[StartLevelService]

    @abc.abstractmethod
    def add_task_to_current_cycle(self, task: "tasks.InstallerTask") -> None:
        """
        Schedule a task to be executed in the running cycle, in sort key order with the remaining tasks.
        """

    @abc.abstractmethod
    def add_task_to_next_cycle(self, task: "tasks.InstallerTask") -> None:
        """
        Schedule a task to be executed in the next cycle.
        """

    def log(self, message: str, *args: object) -> None:
        """
        Report progress of the installation.
        """
        LOGGER.info(message, *args)


class CycleContext(InstallationContext):
    """
    Execution context for a single installer cycle.
    """

    def __init__(
        self,
        runtime: ModuleRuntime,
        start_level_service: Optional[StartLevelService] = None,
        initial_tasks: Sequence["tasks.InstallerTask"] = (),
    ) -> None:
        self.runtime = runtime
        self.start_level_service = start_level_service
        # heap of (sort key, insert order, task): tasks with the same sort key run in insert order
        self._queue: list[tuple[str, int, "tasks.InstallerTask"]] = []
        self._entry_count: int = 0
        self._next_cycle: list["tasks.InstallerTask"] = []
        for task in initial_tasks:
            self.add_task_to_current_cycle(task)

    def add_task_to_current_cycle(self, task: "tasks.InstallerTask") -> None:
        heapq.heappush(self._queue, (task.sort_key, self._entry_count, task))
        self._entry_count += 1

    def add_task_to_next_cycle(self, task: "tasks.InstallerTask") -> None:
        LOGGER.debug("Adding task to next cycle: %s", task)
        self._next_cycle.append(task)

    def pop(self) -> Optional["tasks.InstallerTask"]:
        if not self._queue:
            return None
        _, _, task = heapq.heappop(self._queue)
        return task

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def next_cycle_tasks(self) -> Sequence["tasks.InstallerTask"]:
        return list(self._next_cycle)


class ResourceTransformer(Protocol):
    """
    Decides the concrete type of an untyped resource.
    """

    def transform(self, resource: RegisteredResource) -> Optional[Sequence[TransformationResult]]:
        """
        Returns the transformation results for the resource, or None if this transformer does not handle it.
        """


class Installer:
    """
    Drives the installer cycles: transforms new resources, creates the tasks for the registered resources, executes them
    in sort key order and persists the registry.

    All methods must be called from a single task: the registry is not protected against concurrent use.
    """

    def __init__(
        self,
        registry: PersistentResourceList,
        runtime: ModuleRuntime,
        *,
        transformers: Sequence[ResourceTransformer] = (),
        start_level_service: Optional[StartLevelService] = None,
        artifact_type: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.runtime = runtime
        self.transformers = list(transformers)
        self.start_level_service = start_level_service
        self.artifact_type = artifact_type if artifact_type is not None else config.artifact_type.get()
        self._carried_over: list["tasks.InstallerTask"] = []

    def register(self, resources: Sequence[InstallableResource]) -> None:
        for resource in resources:
            self.registry.add_or_update(resource)

    def unregister(self, url: ResourceUrlStr) -> None:
        self.registry.remove_by_url(url)

    def transform_resources(self) -> bool:
        """
        Offer every untransformed resource to the transformers. The first transformer that returns results wins.

        :return: True iff a resource was transformed.
        """
        changed = False
        for resource in self.registry.get_untransformed_resources():
            resource.state = const.ResourceState.transforming
            results: Optional[Sequence[TransformationResult]] = None
            for transformer in self.transformers:
                try:
                    results = transformer.transform(resource)
                except Exception:
                    LOGGER.warning("Transformer %s failed for resource %s", transformer, resource, exc_info=True)
                    continue
                if results is not None:
                    break
            resource.state = const.ResourceState.registered
            if results is not None:
                self.registry.transform(resource, results)
                changed = True
        return changed

    def compute_tasks(self) -> list["tasks.InstallerTask"]:
        out: list["tasks.InstallerTask"] = []
        for entity_id in self.registry.get_entity_ids():
            group = self.registry.get_entity_resource_list(entity_id)
            if group is None:
                continue
            task = tasks.create_task(group, self.artifact_type)
            if task is not None:
                out.append(task)
        return out

    async def run_cycle(self) -> bool:
        """
        Execute a single installer cycle.

        :return: True iff a resource was transformed, a task changed its resource or compaction changed the registry.
        """
        changed = self.transform_resources()

        carried_over, self._carried_over = self._carried_over, []
        context = CycleContext(self.runtime, self.start_level_service, self.compute_tasks() + carried_over)

        while (task := context.pop()) is not None:
            resource = task.resource
            before = resource.model_dump() if resource is not None else None
            LOGGER.debug("Executing task %s", task)
            try:
                await task.execute(context)
            except InvalidResourceMetadata as e:
                LOGGER.error("Ignoring resource, task %s failed: %s", task, e)
                task.set_finished_state(const.ResourceState.ignored)
            except Exception:
                LOGGER.error("Unexpected error while executing task %s", task, exc_info=True)
            if resource is not None and resource.model_dump() != before:
                changed = True

        self._carried_over = list(context.next_cycle_tasks)
        changed |= self.registry.compact()
        if changed and config.save_on_change.get():
            self.registry.save()
        return changed
