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
import os
from collections import abc
from configparser import ConfigParser, Interpolation
from typing import Callable, Generic, List, Optional, TypeVar, Union

LOGGER = logging.getLogger(__name__)


def _normalize_name(name: str) -> str:
    return name.replace("_", "-")


def _get_from_env(section: str, name: str) -> Optional[str]:
    return os.environ.get(f"MODINSTALL_{section}_{name}".replace("-", "_").upper(), default=None)


class LenientConfigParser(ConfigParser):
    def optionxform(self, name: str) -> str:
        name = _normalize_name(name)
        return super(LenientConfigParser, self).optionxform(name)


class Config(object):
    __instance: Optional[ConfigParser] = None

    @classmethod
    def load_config(
        cls,
        config_file: Optional[str] = None,
        config_dir: Optional[str] = None,
        main_cfg_file: str = "/etc/modinstall/modinstall.cfg",
    ) -> None:
        """
        Load the configuration file
        """

        cfg_files_in_config_dir: List[str]
        if config_dir and os.path.isdir(config_dir):
            cfg_files_in_config_dir = sorted(
                [os.path.join(config_dir, f) for f in os.listdir(config_dir) if f.endswith(".cfg")]
            )
        else:
            cfg_files_in_config_dir = []

        local_cfg_files: List[str] = [os.path.expanduser("~/.modinstall.cfg"), ".modinstall.cfg"]

        # Files with a higher index in the list, override config options defined by files with a lower index
        files: List[str] = [main_cfg_file] + cfg_files_in_config_dir + local_cfg_files
        if config_file is not None:
            files.append(config_file)

        config = LenientConfigParser(interpolation=Interpolation())
        config.read(files)
        cls.__instance = config

    @classmethod
    def _get_instance(cls) -> ConfigParser:
        if cls.__instance is None:
            cls.load_config()

        return cls.__instance

    @classmethod
    def _reset(cls) -> None:
        cls.__instance = None

    @classmethod
    def set(cls, section: str, name: str, value: str) -> None:
        """
        Override a value
        """
        name = _normalize_name(name)

        if section not in cls._get_instance():
            cls._get_instance().add_section(section)
        cls._get_instance().set(section, name, value)


def is_bool(value: Union[bool, str]) -> bool:
    """Boolean value, represented as any of true, false, on, off, yes, no, 1, 0. (Case-insensitive)"""
    if isinstance(value, bool):
        return value
    boolean_states: abc.Mapping[str, bool] = Config._get_instance().BOOLEAN_STATES
    if value.lower() not in boolean_states:
        raise ValueError("Not a boolean: %s" % value)
    return boolean_states[value.lower()]


def is_str(value: str) -> str:
    """str"""
    return str(value)


def is_str_opt(value: str) -> Optional[str]:
    """optional str"""
    if value is None:
        return None
    return str(value)


T = TypeVar("T")


class Option(Generic[T]):
    """
    Defines an option and exposes it for use. Options are defined at the module level.

    :param section: section in the config file
    :param name: name of the option
    :param default: default value for this option, either a value or a function that returns the value
    :param documentation: the documentation for this option
    :param validator: a function responsible for turning the string representation of the option into the correct type.
    """

    def __init__(
        self,
        section: str,
        name: str,
        default: Union[T, None, Callable[[], T]],
        documentation: str,
        validator: Callable[[str], T] = is_str,
    ) -> None:
        self.section = section
        self.name = _normalize_name(name)
        self.validator = validator
        self.documentation = documentation
        self.default = default

    def get(self) -> T:
        out = _get_from_env(self.section, self.name)
        if out is not None:
            LOGGER.debug("Setting %s:%s was set using an environment variable", self.section, self.name)
        else:
            out = Config._get_instance().get(self.section, self.name, fallback=self.get_default_value())
        return self.validate(out)

    def validate(self, value: str) -> T:
        return self.validator(value)

    def get_default_value(self) -> Optional[T]:
        defa = self.default
        if callable(defa):
            return defa()
        else:
            return defa

    def set(self, value: str) -> None:
        """Only for tests"""
        Config.set(self.section, self.name, value)


#############################
# Config
#
# Global config options are defined here
#############################
# flake8: noqa: H904
state_dir = Option("config", "state_dir", "/var/lib/modinstall", "The directory where the installer stores its state", is_str)


#############################
# Installer
#############################
registry_file = Option(
    "installer",
    "registry-file",
    "registry.json",
    "The file the resource registry is persisted to. A relative path is resolved against the state directory.",
    is_str,
)


def default_data_dir() -> str:
    """``<state_dir>/data``"""
    return os.path.join(state_dir.get(), "data")


data_dir = Option(
    "installer", "data-dir", default_data_dir, "The directory where the content of registered resources is stored", is_str
)

artifact_type = Option(
    "installer",
    "artifact-type",
    "bundle",
    "The resource type of the artifacts that are installed and started in the host runtime",
    is_str,
)

save_on_change = Option(
    "installer",
    "save-on-change",
    True,
    "Persist the resource registry at the end of each installer cycle that changed it",
    is_bool,
)


def get_registry_path() -> str:
    """
    Returns the absolute path of the registry snapshot file.
    """
    return os.path.join(state_dir.get(), registry_file.get())


#############################
# Logging
#############################
logging_config = Option(
    "logging",
    "config",
    None,
    "The path to the yaml file with the dict-based logging config, used when no --logging-config is passed on the CLI",
    is_str_opt,
)
