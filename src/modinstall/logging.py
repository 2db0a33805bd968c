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
import logging.config
import os
import sys
from argparse import Namespace
from collections.abc import Mapping, Sequence, Set
from io import TextIOWrapper
from typing import Optional, TextIO

import colorlog
import yaml
from colorlog.formatter import LogColors
from yaml import Dumper, Node

from modinstall import config, const

LOGGER = logging.getLogger(__name__)


def _is_on_tty() -> bool:
    return (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()) or const.ENVIRON_FORCE_TTY in os.environ


def python_log_level_to_name(python_log_level: int) -> str:
    """Convert a python log level to a human readable version that works in log config files"""
    name_to_level = logging.getLevelNamesMapping()
    level_to_name = {v: k for k, v in name_to_level.items()}

    result = level_to_name.get(python_log_level)
    if result is not None:
        return result
    return str(python_log_level)


"""
This dictionary maps the installer log levels to the corresponding Python log levels
"""
log_levels = {
    "0": logging.ERROR,
    "1": logging.WARNING,
    "2": logging.INFO,
    "3": logging.DEBUG,
    "4": const.LOG_LEVEL_TRACE,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": const.LOG_LEVEL_TRACE,
}

logging.addLevelName(const.LOG_LEVEL_TRACE, "TRACE")


def convert_log_level(log_level: str, cli: bool = False) -> int:
    """
    Convert the given installer log level to the corresponding Python log level.

    :param log_level: The installer logging level, either a verbosity count or a level name
    :param cli: True if the logs will be outputted to the CLI.
    :return: python log level
    """
    # maximum of 4 v's
    if log_level.isdigit() and int(log_level) > 4:
        log_level = "4"
    # The minimal log level on the CLI is always WARNING
    if cli and (log_level == "ERROR" or (log_level.isdigit() and int(log_level) < 1)):
        log_level = "WARNING"
    if log_level not in log_levels:
        raise ValueError(f"Unknown log level {log_level}")
    return log_levels[log_level]


class LogConfigDumper(Dumper):
    """
    The representer config is class level

    If we don't subclass, we re-configure the every yaml serializer for the entire process

    To prevent this, we subclass"""

    def encode_streams(self, data: object) -> Node:
        if data == sys.stdout:
            return self.represent_data("ext://sys.stdout")
        if data == sys.stderr:
            return self.represent_data("ext://sys.stderr")
        raise Exception(f"Can not encode stream {data}")


LogConfigDumper.add_representer(TextIOWrapper, LogConfigDumper.encode_streams)


class FullLoggingConfig:
    """
    A logging config that can be applied on Python's logging framework.

    This class supports only version 1 of Python's dictConfig format.
    """

    def __init__(
        self,
        *,
        formatters: Optional[Mapping[str, object]] = None,
        handlers: Optional[Mapping[str, object]] = None,
        loggers: Optional[Mapping[str, object]] = None,
        root_handlers: Optional[list[str]] = None,
        log_dirs_to_create: Optional[Set[str]] = None,
        root_log_level: Optional[int | str] = None,
    ) -> None:
        """
        :param log_dirs_to_create: The log directories that should be created before the logging config can be used.
        """
        self.formatters = formatters if formatters else {}
        self.handlers = handlers if handlers else {}
        self.loggers = loggers if loggers else {}
        self.root_handlers = root_handlers if root_handlers else []
        self.log_dirs_to_create = log_dirs_to_create if log_dirs_to_create else set()
        self.root_log_level = root_log_level

    def ensure_log_dirs(self) -> None:
        for directory in self.log_dirs_to_create:
            os.makedirs(directory, exist_ok=True)

    def apply_config(self) -> None:
        """
        Configure the logging system with this logging config.
        """
        self.ensure_log_dirs()
        logging.config.dictConfig(self._to_dict_config())

    def _to_dict_config(self) -> dict[str, object]:
        return {
            "version": 1,
            "formatters": dict(self.formatters),
            "handlers": dict(self.handlers),
            "loggers": dict(self.loggers),
            "root": {
                "handlers": self.root_handlers,
                **({"level": self.root_log_level} if self.root_log_level else {}),
            },
            "disable_existing_loggers": False,
        }

    def to_string(self) -> str:
        return yaml.dump(self._to_dict_config(), Dumper=LogConfigDumper)


class Options(Namespace):
    """
    The Options class provides a way to configure the InstallerLoggerConfig with the following attributes:

    :param log_file: if this attribute is set, the logs will be written to the specified file instead of the stream
                     specified in `get_instance`.
    :param log_file_level: the installer logging level for the file handler (if `log_file` is set).
                           The possible log levels and their associated python log level are defined in the
                           modinstall.logging.log_levels dictionary.
    :param verbose: the verbosity level of the log messages. can be a number from 0 to 4.
                    if a bigger number is provided, 4 will be used. default is 1 (WARNING)
    :param timed: if true,  adds the time to the formatter in the log lines.
    :param logging_config: Path to the dict-based logging config file.
    """

    log_file: Optional[str] = None
    log_file_level: str = "INFO"
    verbose: int = 1
    timed: bool = False
    logging_config: Optional[str] = None


class LoggingConfigBuilder:
    def get_bootstrap_logging_config(
        self,
        stream: TextIO = sys.stdout,
        python_log_level: int = logging.INFO,
    ) -> FullLoggingConfig:
        """
        This method returns the logging config that should be used between the moment that the process starts,
        and the moment that the logging-related config options are parsed and applied.

        :param stream: The TextIO stream where the logs will be sent to.
        :param python_log_level: python log level to configure for the bootstrap logger
        """
        name_root_handler = "core_console_handler"
        log_level_name = python_log_level_to_name(python_log_level)
        return FullLoggingConfig(
            formatters={
                "core_console_formatter": self._get_multiline_formatter_config(),
            },
            handlers={
                name_root_handler: {
                    "class": "logging.StreamHandler",
                    "formatter": "core_console_formatter",
                    "level": log_level_name,
                    "stream": stream,
                },
            },
            root_handlers=[name_root_handler],
            root_log_level=log_level_name,
        )

    def get_logging_config_from_options(self, stream: TextIO, options: Options) -> FullLoggingConfig:
        """
        Return the logging config based on the given configuration options passed on the CLI.

        :param stream: The TextIO stream where the logs will be sent to.
        :param options: The config options passed on the CLI.
        """
        handlers: dict[str, object] = {}
        handler_root_logger: str
        log_level: int
        log_dirs: set[str] = set()

        if options.log_file:
            log_level = convert_log_level(options.log_file_level)
            handler_root_logger = "root_handler"
            handlers[handler_root_logger] = {
                "class": "logging.handlers.WatchedFileHandler",
                "level": python_log_level_to_name(log_level),
                "formatter": "core_log_formatter",
                "filename": options.log_file,
                "mode": "a+",
            }
            log_dirs.add(os.path.dirname(os.path.abspath(options.log_file)))
        else:
            log_level = convert_log_level(str(options.verbose), cli=True)
            handler_root_logger = "core_console_handler"
            handlers[handler_root_logger] = {
                "class": "logging.StreamHandler",
                "formatter": "core_console_formatter",
                "level": python_log_level_to_name(log_level),
                "stream": stream,
            }

        formatters = {
            # Always add all the formatters, even if they are not used by configuration. This way
            # the formatters can be used if the user dumps the default logging config to file.
            "core_console_formatter": self._get_multiline_formatter_config(options),
            "core_log_formatter": {
                "format": "%(asctime)s %(levelname)-8s %(name)-10s %(message)s",
            },
        }

        return FullLoggingConfig(
            formatters=formatters,
            handlers=handlers,
            root_handlers=[handler_root_logger],
            log_dirs_to_create=log_dirs,
            root_log_level=python_log_level_to_name(log_level),
        )

    def _get_multiline_formatter_config(self, options: Optional[Options] = None) -> dict[str, object]:
        """
        Returns the dict-based formatter config for logs that will be sent to the console.

        :param options: The config options requested by the user or None if the config options are not parsed yet and
                        the bootstrap config should be used.
        """
        log_format = "%(asctime)s " if options and options.timed else ""
        log_colors: Optional[dict[str, str]]
        if _is_on_tty():
            log_format += "%(log_color)s%(name)-25s%(levelname)-8s%(reset)s%(blue)s%(message)s"
            log_colors = {"DEBUG": "cyan", "INFO": "green", "WARNING": "yellow", "ERROR": "red", "CRITICAL": "red"}
        else:
            log_format += "%(name)-25s%(levelname)-8s%(message)s"
            log_colors = None

        return {
            "()": "modinstall.logging.MultiLineFormatter",
            "fmt": log_format,
            "log_colors": log_colors,
            "reset": _is_on_tty(),
            "no_color": not _is_on_tty(),
        }


def read_logging_config_file(file_name: str) -> dict[str, object]:
    """
    Read a dict-based logging config from a yaml file.
    """
    file_name = os.path.abspath(file_name)
    try:
        with open(file_name, "r") as fh:
            logging_config_as_str = fh.read()
    except FileNotFoundError:
        raise Exception(f"Logging config file {file_name} doesn't exist.")

    try:
        result = yaml.safe_load(logging_config_as_str)
    except yaml.YAMLError:
        raise Exception(f"Failed to parse logging config file from {file_name} as yaml.")
    if not isinstance(result, dict):
        raise Exception(f"Logging config file {file_name} does not contain a dictionary.")
    return result


class InstallerLoggerConfig:
    """
    This class is the entry-point for configuring the Python logging framework.

    Usage:
    To use this class, you first need to call the `get_instance`. This method takes a `stream` argument
    that specifies where the log messages should be sent to. If no `stream` is provided,
    the log messages will be sent to standard output.

    You can then call the `apply_options` method to configure the logging options.

    The setup is not done in one step as we want logs for the cmd_parser, which will provide the options needed to configure
    the 'final' logger with `apply_options`.
    """

    _instance: Optional["InstallerLoggerConfig"] = None

    def __init__(self, stream: TextIO = sys.stdout) -> None:
        log_config: FullLoggingConfig = LoggingConfigBuilder().get_bootstrap_logging_config(stream)
        self._stream = stream
        self._handlers: Sequence[logging.Handler] = self._apply_logging_config(log_config)
        self._options_applied: Optional[Options] = None

    @classmethod
    def get_instance(cls, stream: TextIO = sys.stdout) -> "InstallerLoggerConfig":
        """
        This method should be used to obtain an instance of this class, because this class is a singleton.

        :param stream: The stream to send log messages to. Default is standard output (sys.stdout)
        """
        if cls._instance:
            if not cls._instance._handlers:
                raise Exception("No handlers found.")
            handler = cls._instance._handlers[0]
            if isinstance(handler, logging.StreamHandler) and handler.stream != stream:
                raise Exception("Instance already exists with a different stream")
        else:
            cls._instance = cls(stream)
        return cls._instance

    @classmethod
    def clean_instance(cls) -> None:
        """
        This method should be used to clean up an instance of this class.
        """
        if cls._instance is not None:
            for handler in cls._instance._handlers:
                logging.root.removeHandler(handler)
                handler.close()
        cls._instance = None

    def apply_options(self, options: Options) -> None:
        """
        Apply the logging options to the current handler. A handler should have been created before

        :param options: The Option object coming from the command line. This function uses the following
            attributes: logging_config, log_file, log_file_level, verbose, timed
        """
        if self._options_applied:
            raise Exception("Options can only be applied once to a handler.")

        logging_config_file = options.logging_config or config.logging_config.get()
        if logging_config_file:
            dict_config = read_logging_config_file(logging_config_file)
            handlers_before = list(logging.root.handlers)
            try:
                logging.config.dictConfig(dict_config)
            except Exception:
                raise Exception(f"Failed to apply the logging config defined in {logging_config_file}.")
            self._handlers = [handler for handler in logging.root.handlers if handler not in handlers_before]
        else:
            logging_config = LoggingConfigBuilder().get_logging_config_from_options(self._stream, options)
            self._handlers = self._apply_logging_config(logging_config)
        self._options_applied = options

    def _apply_logging_config(self, logging_config: FullLoggingConfig) -> Sequence[logging.Handler]:
        handlers_before = list(logging.root.handlers)
        logging_config.apply_config()
        return [handler for handler in logging.root.handlers if handler not in handlers_before]


class MultiLineFormatter(colorlog.ColoredFormatter):
    """
    Formatter for multi-line log records.

    This class extends the `colorlog.ColoredFormatter` class to provide a custom formatting method for log records that
    span multiple lines.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        *,
        log_colors: Optional[LogColors] = None,
        reset: bool = True,
        no_color: bool = False,
    ):
        """
        Initialize a new `MultiLineFormatter` instance.

        :param fmt: Optional string specifying the log record format.
        :param log_colors: Optional `LogColors` object mapping log level names to color codes.
        :param reset: Boolean indicating whether to reset terminal colors at the end of each log record.
        :param no_color: Boolean indicating whether to disable colors in the output.
        """
        super().__init__(fmt, log_colors=log_colors, reset=reset, no_color=no_color)
        self.fmt = fmt

    def get_header_length(self, record: logging.LogRecord) -> int:
        """
        Get the header length of a given log record.

        :param record: The `logging.LogRecord` object for which to calculate the header length.
        :return: The length of the header in the log record, without color codes.
        """
        # to get the length of the header we want to get the header without the color codes
        formatter = colorlog.ColoredFormatter(
            fmt=self.fmt,
            log_colors=self.log_colors,
            reset=False,
            no_color=True,
        )
        header = formatter.format(
            logging.LogRecord(
                record.name,
                record.levelno,
                record.pathname,
                record.lineno,
                "",
                (),
                None,
            )
        )
        return len(header)

    def format(self, record: logging.LogRecord) -> str:
        """
        Format a log record with added indentation.

        :param record: The `logging.LogRecord` object to format.
        :return: The formatted log record as a string.
        """
        indent: str = " " * self.get_header_length(record)
        head, *tail = super().format(record).splitlines(True)
        return head + "".join(indent + line for line in tail)
