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

from typing import Optional


class InstallerException(Exception):
    """
    Base exception for all errors raised by the installer core.
    """

    def __init__(self, msg: str) -> None:
        super().__init__(msg)
        self.msg = msg


class InvalidResourceMetadata(InstallerException):
    """
    The declared metadata of a resource can not be interpreted, e.g. a start level that is not a number.
    """

    def __init__(self, url: str, key: str, value: object) -> None:
        super().__init__(f"Invalid value {value!r} for property {key} of resource {url}")
        self.url = url
        self.key = key
        self.value = value


class ArtifactException(InstallerException):
    """
    Raised by the host runtime when it rejects an operation on an artifact.
    """

    def __init__(self, msg: str, artifact_id: Optional[int] = None) -> None:
        super().__init__(msg)
        self.artifact_id = artifact_id


class SnapshotException(InstallerException):
    """
    A registry snapshot could not be read.
    """
