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

import dataclasses
import datetime
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, BinaryIO, Optional, Self, Union

import pydantic
from packaging import version as packaging_version

from modinstall import const
from modinstall.datastore import FileDataStore, compute_digest
from modinstall.types import EntityIdStr, ResourceUrlStr

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class InstallableResource:
    """
    A resource as offered to the installer by a resource provider.

    :param url: Unique identifier of the content source.
    :param resource_type: The type of the resource. Raw types (file, properties) still need to be transformed.
    :param digest: Content fingerprint. Computed from the content when not provided.
    :param content: The content of the resource, if any.
    :param dictionary: Declared properties of the resource.
    :param entity_id: Entity the resource competes for. Only meaningful for typed resources.
    :param priority: Priority of the resource within its entity group, higher wins.
    """

    url: ResourceUrlStr
    resource_type: str
    digest: Optional[str] = None
    content: Union[bytes, BinaryIO, None] = None
    dictionary: Mapping[str, object] = dataclasses.field(default_factory=dict)
    entity_id: Optional[EntityIdStr] = None
    priority: int = const.DEFAULT_PRIORITY


@dataclass(frozen=True, kw_only=True)
class TransformationResult:
    """
    The outcome of transforming an untyped resource: the concrete type and the entity it installs.

    :param resource_type: The concrete resource type, e.g. bundle.
    :param entity_id: The entity the transformed resource competes for.
    :param version: The version of the artifact, used to select the active resource of an entity group.
    :param attributes: Attributes to attach to the transformed resource.
    :param content: Replacement content, when the transformation changed it.
    """

    resource_type: str
    entity_id: EntityIdStr
    version: Optional[str] = None
    attributes: Mapping[str, object] = dataclasses.field(default_factory=dict)
    content: Union[bytes, BinaryIO, None] = None


def _now() -> datetime.datetime:
    return datetime.datetime.now().astimezone()


class RegisteredResource(pydantic.BaseModel):
    """
    A resource managed by the installer. The identifying fields (url, digest, type, entity) never change; state and
    attributes are updated by the tasks that act on the resource.
    """

    url: ResourceUrlStr = pydantic.Field(frozen=True)
    digest: str = pydantic.Field(frozen=True)
    resource_type: str = pydantic.Field(frozen=True)
    entity_id: Optional[EntityIdStr] = pydantic.Field(default=None, frozen=True)
    dictionary: dict[str, Any] = pydantic.Field(default_factory=dict)
    attributes: dict[str, Any] = pydantic.Field(default_factory=dict)
    temporary_attributes: dict[str, Any] = pydantic.Field(default_factory=dict)
    state: const.ResourceState = const.ResourceState.registered
    priority: int = const.DEFAULT_PRIORITY
    data_file: Optional[str] = None
    registered_at: datetime.datetime = pydantic.Field(default_factory=_now)

    @classmethod
    def create(cls, resource: InstallableResource, data_store: Optional[FileDataStore] = None) -> Self:
        """
        Create a registered resource for the given input, storing its content in the data store.

        :raises ValueError: When a typed resource has no entity id, or the resource has neither digest nor content.
        :raises OSError: When the content can not be stored.
        """
        if resource.resource_type not in const.RAW_RESOURCE_TYPES and not resource.entity_id:
            raise ValueError(f"Typed resource {resource.url} has no entity id")
        data_file: Optional[str] = None
        digest: Optional[str] = resource.digest
        if resource.content is not None:
            if data_store is None:
                raise ValueError(f"Resource {resource.url} has content but no data store is available")
            data_file = data_store.create_data_file(resource.content, hint=resource.url)
            if digest is None:
                with open(data_file, "rb") as fh:
                    digest = compute_digest(fh)
        if digest is None:
            raise ValueError(f"Resource {resource.url} has neither a digest nor content")
        return cls(
            url=resource.url,
            digest=digest,
            resource_type=resource.resource_type,
            entity_id=resource.entity_id,
            dictionary=dict(resource.dictionary),
            priority=resource.priority,
            data_file=data_file,
        )

    def clone(self, result: TransformationResult, data_store: Optional[FileDataStore] = None) -> "RegisteredResource":
        """
        Create a typed copy of this resource for the given transformation result. The copy keeps the url, digest, declared
        properties and content of this resource and starts its own lifecycle.

        :raises ValueError: When the result does not define a type and an entity.
        :raises OSError: When replacement content can not be stored.
        """
        if not result.resource_type:
            raise ValueError(f"Transformation result for {self.url} has no resource type")
        if not result.entity_id:
            raise ValueError(f"Transformation result for {self.url} has no entity id")

        data_file = self.data_file
        if result.content is not None:
            if data_store is None:
                raise ValueError(f"Transformation result for {self.url} has content but no data store is available")
            data_file = data_store.create_data_file(result.content, hint=self.url)

        attributes = dict(result.attributes)
        if result.version is not None:
            attributes[const.PROPERTY_VERSION] = result.version

        return RegisteredResource(
            url=self.url,
            digest=self.digest,
            resource_type=result.resource_type,
            entity_id=result.entity_id,
            dictionary=dict(self.dictionary),
            attributes=attributes,
            priority=self.priority,
            data_file=data_file,
        )

    def is_untyped(self) -> bool:
        return self.resource_type in const.RAW_RESOURCE_TYPES

    @property
    def version(self) -> packaging_version.Version:
        """
        The version of this resource as declared by its attributes or properties. Defaults to 0.
        """
        raw = self.attributes.get(const.PROPERTY_VERSION, self.dictionary.get(const.PROPERTY_VERSION))
        if raw is None:
            return packaging_version.Version("0")
        try:
            return packaging_version.Version(str(raw))
        except packaging_version.InvalidVersion:
            LOGGER.debug("Resource %s has an invalid version %s, treating it as 0", self.url, raw)
            return packaging_version.Version("0")

    def has_content(self) -> bool:
        return self.data_file is not None and os.path.exists(self.data_file)

    def open_content(self) -> Optional[BinaryIO]:
        """
        Open the content of this resource for reading, or return None if it has no content.
        The caller is responsible for closing the stream.
        """
        if self.data_file is None:
            return None
        return open(self.data_file, "rb")

    def get_temporary_attribute(self, key: str) -> Optional[Any]:
        return self.temporary_attributes.get(key)

    def set_temporary_attribute(self, key: str, value: Optional[Any]) -> None:
        """
        Set a temporary attribute. Setting a value of None removes the attribute.
        """
        if value is None:
            self.temporary_attributes.pop(key, None)
        else:
            self.temporary_attributes[key] = value

    def __str__(self) -> str:
        return f"RegisteredResource(url={self.url}, entity={self.entity_id}, type={self.resource_type}, state={self.state.value})"
