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

import functools
import json
import logging
import os
import tempfile
from collections.abc import Iterator, Sequence
from typing import Optional

import pydantic

from modinstall import const
from modinstall.datastore import FileDataStore
from modinstall.exceptions import SnapshotException
from modinstall.resources import InstallableResource, RegisteredResource, TransformationResult
from modinstall.types import EntityIdStr, ResourceUrlStr

LOGGER = logging.getLogger(__name__)


def _compare(first: RegisteredResource, second: RegisteredResource) -> int:
    """
    Order of preference within an entity group: highest priority, then highest version, then most recently registered.
    The url is the final tiebreaker to keep the order deterministic.
    """
    if first.priority != second.priority:
        return -1 if first.priority > second.priority else 1
    first_version, second_version = first.version, second.version
    if first_version != second_version:
        return -1 if first_version > second_version else 1
    if first.registered_at != second.registered_at:
        return -1 if first.registered_at > second.registered_at else 1
    if first.url != second.url:
        return -1 if first.url < second.url else 1
    return 0


_sort_key = functools.cmp_to_key(_compare)


class EntityResourceList:
    """
    All registered resources that compete for the same entity. The members are kept in order of preference: the first
    member that is not ignored or uninstalled is the active resource, the one tasks act upon.
    """

    def __init__(self, entity_id: EntityIdStr, resources: Optional[Sequence[RegisteredResource]] = None) -> None:
        self.entity_id = entity_id
        self._resources: list[RegisteredResource] = sorted(resources or [], key=_sort_key)

    def get_resources(self) -> Sequence[RegisteredResource]:
        return list(self._resources)

    def __iter__(self) -> Iterator[RegisteredResource]:
        return iter(list(self._resources))

    def __len__(self) -> int:
        return len(self._resources)

    def is_empty(self) -> bool:
        return not self._resources

    def get_active_resource(self) -> Optional[RegisteredResource]:
        for resource in self._resources:
            if resource.state not in const.INACTIVE_STATES:
                return resource
        return None

    def add_or_update(self, resource: RegisteredResource) -> bool:
        """
        Add a resource to this group. A resource with the same url and digest as an existing member is not added again.
        A resource with the same url but a different digest is added next to the existing one, compact() removes the one
        that lost.

        :return: True iff the resource was added.
        """
        for existing in self._resources:
            if existing.url == resource.url and existing.digest == resource.digest:
                LOGGER.debug("Resource %s already registered for entity %s", resource.url, self.entity_id)
                return False
        self._resources.append(resource)
        self._resources.sort(key=_sort_key)
        return True

    def remove(self, url: ResourceUrlStr) -> bool:
        """
        Remove all members with the given url.

        :return: True iff a member was removed.
        """
        before = len(self._resources)
        self._resources = [r for r in self._resources if r.url != url]
        return len(self._resources) != before

    def remove_resource(self, resource: RegisteredResource) -> bool:
        before = len(self._resources)
        self._resources = [r for r in self._resources if r is not resource]
        return len(self._resources) != before

    def compact(self) -> bool:
        """
        Drop the members that can no longer become the active resource: uninstalled members, ignored members and members
        whose url is held by a member that is preferred over them. The active resource is always retained.

        :return: True iff a member was dropped.
        """
        active = self.get_active_resource()
        seen_urls: set[ResourceUrlStr] = set()
        keep: list[RegisteredResource] = []
        for resource in self._resources:
            if resource is active:
                keep.append(resource)
            elif resource.state in const.INACTIVE_STATES:
                LOGGER.debug("Dropping %s resource %s from entity %s", resource.state.value, resource.url, self.entity_id)
                continue
            elif resource.url in seen_urls:
                LOGGER.debug("Dropping superseded resource %s from entity %s", resource.url, self.entity_id)
                continue
            else:
                keep.append(resource)
            seen_urls.add(resource.url)

        changed = len(keep) != len(self._resources)
        self._resources = keep
        return changed

    def __repr__(self) -> str:
        return f"EntityResourceList({self.entity_id}, {[r.url for r in self._resources]})"


class RegistrySnapshot(pydantic.BaseModel):
    """
    On disk format of the registry. Version 1 snapshots do not contain the untransformed resources.
    """

    version: int
    data: dict[EntityIdStr, list[RegisteredResource]]
    untransformed: list[RegisteredResource] = pydantic.Field(default_factory=list)


class PersistentResourceList:
    """
    The set of all resources registered with the installer, grouped per entity, together with the resources that still
    need to be transformed before they can be grouped.

    Every registered resource is either in exactly one entity group or in the untransformed list. The registry is loaded
    from its snapshot file when it is created and written back with save(). It is not thread safe: it must only be used
    from the thread that drives the installer cycles.
    """

    def __init__(self, data_file: str, data_store: Optional[FileDataStore] = None) -> None:
        """
        :param data_file: The snapshot file. When it does not exist or can not be read, the registry starts empty.
        :param data_store: The store for resource content and the url to digest cache.
        """
        self.data_file = data_file
        self.data_store = data_store

        self._data: dict[EntityIdStr, EntityResourceList] = {}
        self._untransformed: list[RegisteredResource] = []

        snapshot = self._restore()
        if snapshot is not None:
            self._data = {entity_id: EntityResourceList(entity_id, resources) for entity_id, resources in snapshot.data.items()}
            if snapshot.version == const.SNAPSHOT_VERSION:
                self._untransformed = list(snapshot.untransformed)
        self._update_cache()

    def _restore(self) -> Optional[RegistrySnapshot]:
        if not os.path.exists(self.data_file):
            return None
        try:
            snapshot = self._read_snapshot()
        except Exception as e:
            LOGGER.warning("Unable to restore data, starting with empty list (%s)", e, exc_info=True)
            return None
        LOGGER.debug(
            "Restored resource list with %d entities and %d untransformed resources",
            len(snapshot.data),
            len(snapshot.untransformed),
        )
        return snapshot

    def _read_snapshot(self) -> RegistrySnapshot:
        with open(self.data_file, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, dict):
            raise SnapshotException(f"Snapshot {self.data_file} is not a json object")
        version = raw.get("version")
        if not isinstance(version, int) or isinstance(version, bool) or not 0 < version <= const.SNAPSHOT_VERSION:
            raise SnapshotException(f"Unknown version for persistent resource list: {version}")
        if version < const.SNAPSHOT_VERSION:
            raw = {k: v for k, v in raw.items() if k != "untransformed"}
        return RegistrySnapshot.model_validate(raw)

    def _update_cache(self) -> None:
        """
        Rebuild the url to digest cache from every resource that still has its content.
        """
        if self.data_store is None:
            return
        for resource in self._all_resources():
            if resource.has_content():
                self.data_store.update_digest_cache(resource.url, resource.digest)

    def _all_resources(self) -> Iterator[RegisteredResource]:
        for group in self._data.values():
            yield from group
        yield from self._untransformed

    def save(self) -> None:
        """
        Persist the current state. Failures are logged, the in-memory state remains authoritative.
        """
        snapshot = RegistrySnapshot(
            version=const.SNAPSHOT_VERSION,
            data={entity_id: group.get_resources() for entity_id, group in self._data.items()},
            untransformed=list(self._untransformed),
        )
        try:
            directory = os.path.dirname(os.path.abspath(self.data_file))
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".registry-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(snapshot.model_dump_json())
                os.replace(tmp_path, self.data_file)
            except BaseException:
                os.unlink(tmp_path)
                raise
            LOGGER.debug("Persisted resource list to %s", self.data_file)
        except Exception as e:
            LOGGER.warning("Unable to save persistent list: %s", e, exc_info=True)

    def get_entity_ids(self) -> Sequence[EntityIdStr]:
        return list(self._data.keys())

    def get_entity_resource_list(self, entity_id: EntityIdStr) -> Optional[EntityResourceList]:
        return self._data.get(entity_id)

    def get_untransformed_resources(self) -> Sequence[RegisteredResource]:
        return list(self._untransformed)

    def contains(self, url: ResourceUrlStr, digest: str) -> bool:
        """
        Returns True iff a resource with the given url and digest is registered, transformed or not.
        """
        return any(r.url == url and r.digest == digest for r in self._all_resources())

    def add_or_update(self, resource: InstallableResource) -> None:
        """
        Register a resource. Registering a resource with the same url and digest as a registered one is a no-op.
        """
        if resource.digest is not None and self.contains(resource.url, resource.digest):
            return
        try:
            registered = RegisteredResource.create(resource, self.data_store)
        except (OSError, ValueError):
            LOGGER.warning("Ignoring resource. Error during processing of %s", resource.url, exc_info=True)
            return
        if resource.digest is None and self.contains(registered.url, registered.digest):
            # The digest was only known after storing the content
            self._discard_content(registered)
            return
        try:
            self._check_installable(registered)
        except ValueError:
            LOGGER.warning("Ignoring resource. Error during processing of %s", resource.url, exc_info=True)
            self._discard_content(registered)
            return
        if self.data_store is not None:
            self.data_store.update_digest_cache(registered.url, registered.digest)

    def _discard_content(self, resource: RegisteredResource) -> None:
        if resource.data_file is None:
            return
        try:
            os.unlink(resource.data_file)
        except OSError:
            LOGGER.debug("Unable to remove data file %s", resource.data_file, exc_info=True)

    def _check_installable(self, resource: RegisteredResource) -> None:
        """
        Put a resource where it belongs: typed resources in the group of their entity, untyped ones in the untransformed
        list.
        """
        if resource.is_untyped():
            self._untransformed.append(resource)
            return

        if resource.entity_id is None:
            raise ValueError(f"Typed resource {resource.url} has no entity id")
        group = self._data.get(resource.entity_id)
        if group is None:
            group = EntityResourceList(resource.entity_id)
            self._data[resource.entity_id] = group
        group.add_or_update(resource)

    def remove_by_url(self, url: ResourceUrlStr) -> None:
        """
        Remove all resources with the given url from every entity group.
        """
        for group in self._data.values():
            group.remove(url)

    def remove(self, resource: RegisteredResource) -> None:
        """
        Remove a resource from its entity group.
        """
        if resource.entity_id is None:
            return
        group = self._data.get(resource.entity_id)
        if group is not None:
            group.remove_resource(resource)

    def compact(self) -> bool:
        """
        Compact every entity group and drop the groups that became empty.

        :return: True iff anything changed, meaning the registry should be saved.
        """
        changed = False
        for entity_id, group in list(self._data.items()):
            changed |= group.compact()
            if group.is_empty():
                changed = True
                del self._data[entity_id]
        return changed

    def transform(self, resource: RegisteredResource, results: Sequence[TransformationResult]) -> None:
        """
        Replace an untransformed resource by one typed resource per transformation result. A result that can not be
        processed is logged and skipped, the others are still registered.
        """
        self._untransformed = [
            r for r in self._untransformed if not (r is resource or (r.url == resource.url and r.digest == resource.digest))
        ]
        for result in results:
            try:
                clone = resource.clone(result, self.data_store)
                self._check_installable(clone)
            except Exception:
                LOGGER.warning(
                    "Ignoring transformation result %s. Error during processing of %s", result, resource, exc_info=True
                )
