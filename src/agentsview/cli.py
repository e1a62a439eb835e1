"""
Command-line entry point for ``agentsview-update``.

Progress lines go to stdout, log records to stderr. This is the only place
where update errors become user-facing messages and an exit status.
"""

from __future__ import annotations

import asyncio
import sys

import yaml
from pydantic import ValidationError

from agentsview import __version__
from agentsview.config import AppConfig, CommandOptions, load_config_and_options
from agentsview.errors import UpdateError
from agentsview.logging import get_logger, setup_logging
from agentsview.update.service import UpdateService
from agentsview.update.version import normalize_semver

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def _report(message: str) -> None:
    print(message, flush=True)


async def _run(
    config: AppConfig,
    options: CommandOptions,
    current_version: str,
) -> None:
    service = UpdateService.from_config(config, current_version, reporter=_report)

    if options.check:
        check = await service.check_for_update(force=options.force)
        if check.is_dev_build and check.latest_version is None:
            _report(f"Running a development build ({current_version or 'unknown'})")
        elif check.update_available:
            _report(
                f"Update available: {normalize_semver(current_version)} -> "
                f"{normalize_semver(check.latest_version or '')}"
            )
        else:
            _report(f"agentsview {normalize_semver(current_version)} is up to date")
        return

    await service.run_update(force=options.force)


def main(argv: list[str] | None = None, current_version: str = __version__) -> int:
    """
    Run the update command.

    Args:
        argv: Command-line arguments, without the program name.
        current_version: Version of the binary being updated.

    Returns:
        Process exit status.
    """
    try:
        config, options = load_config_and_options(cli_args=argv)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        print(f"agentsview-update: configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    setup_logging(config.logging)
    logger.debug(
        "Starting update command",
        extra={"check": options.check, "force": options.force},
    )

    try:
        asyncio.run(_run(config, options, current_version))
    except UpdateError as e:
        print(f"agentsview-update: {e.message}", file=sys.stderr)
        return EXIT_FAILURE

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
