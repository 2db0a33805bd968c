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

# This file defines named type definition for the modinstall code base

EntityIdStr = str
"""Identifier of the logical artifact slot a resource competes for."""

ResourceUrlStr = str
"""Unique identifier of the content source of a resource."""

ArtifactId = int
"""Identity of an installed artifact in the host runtime."""
