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

import shutil
from typing import List, Optional

import click
import texttable

from modinstall import config
from modinstall.config import Config
from modinstall.logging import InstallerLoggerConfig, Options
from modinstall.registry import PersistentResourceList


def print_table(header: List[str], rows: List[List[str]], data_type: Optional[List[str]] = None) -> None:
    click.echo(get_table(header, rows, data_type))


def get_table(header: List[str], rows: List[List[str]], data_type: Optional[List[str]] = None) -> str:
    """
    Returns a table that would fit in the current terminal.
    """
    width, _ = shutil.get_terminal_size()

    table = texttable.Texttable(max_width=width)
    table.set_deco(texttable.Texttable.HEADER | texttable.Texttable.BORDER | texttable.Texttable.VLINES)
    if data_type is not None:
        table.set_cols_dtype(data_type)
    table.header(header)
    for row in rows:
        table.add_row(row)
    return table.draw()


@click.group(help="Inspect and maintain the resource registry of the module installer")
@click.option("--config", "-c", "config_file", help="Use this config file", type=click.Path(dir_okay=False))
@click.option("--state-dir", help="Override the state directory that holds the registry")
@click.option("-v", "--verbose", count=True, help="Log level for messages going to the console. Default is warnings only.")
@click.option("--log-file", help="Path to the logfile, logs go to this file instead of the console")
@click.option(
    "--log-file-level",
    default="INFO",
    show_default=True,
    help="Log level for messages going to the logfile: 0=ERROR, 1=WARNING, 2=INFO, 3=DEBUG, 4=TRACE",
)
@click.option("--logging-config", help="The path to the configuration file for the logging framework")
@click.pass_context
def cmd(
    ctx: click.Context,
    config_file: Optional[str],
    state_dir: Optional[str],
    verbose: int,
    log_file: Optional[str],
    log_file_level: str,
    logging_config: Optional[str],
) -> None:
    Config.load_config(config_file)
    if state_dir is not None:
        config.state_dir.set(state_dir)

    InstallerLoggerConfig.clean_instance()
    InstallerLoggerConfig.get_instance(click.get_text_stream("stderr")).apply_options(
        Options(verbose=verbose, log_file=log_file, log_file_level=log_file_level, logging_config=logging_config)
    )

    ctx.obj = PersistentResourceList(config.get_registry_path())


@cmd.group("registry", help="Subcommand to inspect the registered resources")
@click.pass_context
def registry(ctx: click.Context) -> None:
    pass


@registry.command(name="list", help="List all entities and their active resource")
@click.pass_obj
def registry_list(resource_list: PersistentResourceList) -> None:
    rows = []
    for entity_id in sorted(resource_list.get_entity_ids()):
        group = resource_list.get_entity_resource_list(entity_id)
        assert group is not None
        active = group.get_active_resource()
        rows.append(
            [
                entity_id,
                active.url if active is not None else "",
                active.state.value if active is not None else "",
                str(len(group)),
            ]
        )
    if rows:
        print_table(["Entity", "Active resource", "State", "Resources"], rows)
    else:
        click.echo("No entities registered")


@registry.command(name="show", help="Show all resources registered for an entity")
@click.argument("entity_id")
@click.pass_obj
def registry_show(resource_list: PersistentResourceList, entity_id: str) -> None:
    group = resource_list.get_entity_resource_list(entity_id)
    if group is None:
        raise click.ClickException(f"Entity {entity_id} is not registered")
    active = group.get_active_resource()
    print_table(
        ["URL", "Type", "Version", "Priority", "State", "Active", "Digest"],
        [
            [
                r.url,
                r.resource_type,
                str(r.version),
                str(r.priority),
                r.state.value,
                "*" if r is active else "",
                r.digest[:12],
            ]
            for r in group.get_resources()
        ],
    )


@registry.command(name="untransformed", help="List the resources that still have to be transformed")
@click.pass_obj
def registry_untransformed(resource_list: PersistentResourceList) -> None:
    resources = resource_list.get_untransformed_resources()
    if not resources:
        click.echo("No untransformed resources")
        return
    print_table(["URL", "Type", "Digest"], [[r.url, r.resource_type, r.digest[:12]] for r in resources])


@registry.command(name="compact", help="Drop stale resources and empty entities and save the registry")
@click.pass_obj
def registry_compact(resource_list: PersistentResourceList) -> None:
    if resource_list.compact():
        resource_list.save()
        click.echo("Registry compacted")
    else:
        click.echo("Nothing to compact")


def main() -> None:
    cmd()


if __name__ == "__main__":
    main()
