"""CLI entrypoint for syft-generator."""

import logging
from collections.abc import Callable
from typing import TextIO, TypeVar

import rich_click as click

from syft_generator import __version__
from syft_generator.orchestrator.controllers import (
    CheckConfigCommand,
    GeneratorCliController,
    RenderTaskRunCommand,
    RunCommand,
)

click.rich_click.USE_MARKDOWN = True
GENERATOR_CONTROLLER = GeneratorCliController()
CommandT = TypeVar("CommandT")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="syft-generator")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level for the generator loggers.",
)
def syft_generator(log_level: str) -> None:
    """Syft SBOM generator node.

    Configuration is read from `SYFT_GENERATOR_*` environment variables.
    """

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@syft_generator.command("run")
@click.option(
    "--events",
    type=click.File("r", encoding="utf-8"),
    default="-",
    show_default=True,
    help="File with `GenerationCreated` events, one JSON object per line. `-` reads stdin.",
)
@click.option(
    "--exit-when-idle/--keep-running",
    default=False,
    show_default=True,
    help="Stop once all accepted generations reached a terminal status.",
)
def run(events: TextIO, exit_when_idle: bool) -> None:
    """Run admission, reconciliation and event intake."""

    _emit_lines(
        _call(
            GENERATOR_CONTROLLER.run,
            RunCommand(events=events, exit_when_idle=exit_when_idle),
        ),
    )


@syft_generator.command("render-taskrun")
@click.argument("event", type=click.File("r", encoding="utf-8"), default="-")
@click.option(
    "--retry-count",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Attempt number written to the retry-count annotation.",
)
@click.option(
    "--memory",
    default=None,
    help="Memory override for the generate step, for example `2Gi`.",
)
def render_taskrun(event: TextIO, retry_count: int, memory: str | None) -> None:
    """Print the TaskRun that would be created for a `GenerationCreated` event."""

    _emit_lines(
        _call(
            GENERATOR_CONTROLLER.render_taskrun,
            RenderTaskRunCommand(event=event, retry_count=retry_count, memory=memory),
        ),
    )


@syft_generator.command("check-config")
def check_config() -> None:
    """Validate settings and print the effective values."""

    _emit_lines(_call(GENERATOR_CONTROLLER.check_config, CheckConfigCommand()))


def _call(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except ValueError as error:
        raise click.UsageError(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    syft_generator()
