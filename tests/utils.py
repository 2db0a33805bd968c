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

from modinstall.registry import PersistentResourceList
from modinstall.resources import RegisteredResource


def log_contains(caplog, loggerpart, level, msg, test_phase="call"):
    close = []
    for record in caplog.get_records(test_phase):
        logger_name, log_level, message = record.name, record.levelno, record.message
        if msg in message:
            if loggerpart in logger_name and level == log_level:
                return
            else:
                close.append((logger_name, log_level, message))
    if close:
        print("found nearly matching log entry")
        for logger_name, log_level, message in close:
            print(logger_name, log_level, message)
        print("------------")

    assert False, f"could not find {msg}"


def log_doesnt_contain(caplog, loggerpart, level, msg):
    for logger_name, log_level, message in caplog.record_tuples:
        if loggerpart in logger_name and level == log_level and msg in message:
            assert False, f"found {msg}"


class LogSequence(object):
    def __init__(self, caplog, index=0, allow_errors=True, ignore=[]):
        """

        :param caplog: caplog fixture
        :param index: start index in the log
        :param allow_errors: allow errors between log entries that are requested by log_contains
        :param ignore: ignore following namespaces
        """
        self.caplog = caplog
        self.index = index
        self.allow_errors = allow_errors
        self.ignore = ignore

    def _find(self, loggerpart, level, msg, after=0):
        for i, (logger_name, log_level, message) in enumerate(self.caplog.record_tuples[after:]):
            if msg in message:
                if loggerpart in logger_name and level == log_level:
                    if any(i in logger_name for i in self.ignore):
                        continue
                    return i + after
        return -1

    def contains(self, loggerpart, level, msg):
        index = self._find(loggerpart, level, msg, self.index)
        if not self.allow_errors:
            # first error is later
            idxe = self._find("", logging.ERROR, "", self.index)
            assert idxe == -1 or idxe >= index
        assert index >= 0, "could not find " + msg
        return LogSequence(self.caplog, index + 1, self.allow_errors, self.ignore)

    def assert_not(self, loggerpart, level, msg):
        idx = self._find(loggerpart, level, msg, self.index)
        assert idx == -1, f"{idx}, {self.caplog.record_tuples[idx]}"

    def no_more_errors(self):
        self.assert_not("", logging.ERROR, "")


def all_resources(registry: PersistentResourceList) -> list[RegisteredResource]:
    """
    Returns every resource in the registry: the members of all entity groups followed by the untransformed resources.
    """
    out: list[RegisteredResource] = []
    for entity_id in registry.get_entity_ids():
        group = registry.get_entity_resource_list(entity_id)
        assert group is not None
        out.extend(group.get_resources())
    out.extend(registry.get_untransformed_resources())
    return out


def registry_view(registry: PersistentResourceList) -> tuple[dict[str, list[tuple[str, str, str]]], list[tuple[str, str]]]:
    """
    Returns a comparable view on the content of the registry: per entity the (url, digest, type) of its members, in order,
    and the (url, digest) of the untransformed resources.
    """
    groups = {}
    for entity_id in registry.get_entity_ids():
        group = registry.get_entity_resource_list(entity_id)
        assert group is not None
        groups[entity_id] = [(r.url, r.digest, r.resource_type) for r in group.get_resources()]
    untransformed = [(r.url, r.digest) for r in registry.get_untransformed_resources()]
    return groups, untransformed
