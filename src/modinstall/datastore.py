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

import hashlib
import logging
import os
import threading
import uuid
from typing import BinaryIO, Optional, Union

from modinstall.types import ResourceUrlStr

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def compute_digest(content: Union[bytes, BinaryIO]) -> str:
    """
    Compute the content digest for the given bytes or binary stream. The stream is consumed.
    """
    digest = hashlib.sha256()
    if isinstance(content, bytes):
        digest.update(content)
    else:
        while chunk := content.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


class FileDataStore:
    """
    Stores the content of registered resources as files in a directory and keeps a cache of the last digest known for each
    resource url.

    The digest cache is never persisted: it is derived from the registry snapshot when the registry is loaded.
    """

    def __init__(self, directory: str) -> None:
        self.directory = directory
        self._digest_cache: dict[ResourceUrlStr, str] = {}
        self._lock = threading.Lock()

    def create_data_file(self, content: Union[bytes, BinaryIO], hint: str = "resource") -> str:
        """
        Copy the given content into a new file in the data store and return its path.

        :param content: The content to store, either as bytes or as a binary stream.
        :param hint: Prefix for the file name, to make the data directory easier to inspect.
        """
        os.makedirs(self.directory, exist_ok=True)
        safe_hint = "".join(c if c.isalnum() or c in "-_." else "_" for c in hint)[-40:]
        path = os.path.join(self.directory, f"{safe_hint}-{uuid.uuid4().hex}")
        with open(path, "wb") as fh:
            if isinstance(content, bytes):
                fh.write(content)
            else:
                while chunk := content.read(CHUNK_SIZE):
                    fh.write(chunk)
        LOGGER.debug("Stored content of %s in %s", hint, path)
        return path

    def update_digest_cache(self, url: ResourceUrlStr, digest: str) -> None:
        with self._lock:
            self._digest_cache[url] = digest

    def get_digest(self, url: ResourceUrlStr) -> Optional[str]:
        """
        Returns the last known digest for the given url, or None if the url is unknown.
        """
        return self._digest_cache.get(url)

    def remove_from_digest_cache(self, url: ResourceUrlStr) -> None:
        with self._lock:
            self._digest_cache.pop(url, None)
