from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import click
import rich
from click.exceptions import Exit
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from .config import load_config
from .session import SessionBuilder
from .typecast import TypeCastError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .session import Session

out = rich.get_console()
err = Console(stderr=True)

POLL_INTERVAL = 0.05


def pump_output(
    session: Session,
    write: Callable[[str], object],
    *,
    until: Optional[str] = None,
    idle: float = 1.0,
) -> bool:
    """Write output lines as they arrive, without ever blocking in ``read``.

    Stops once a line contains ``until``, the output has ended and was
    fully read, or no line arrived for ``idle`` seconds. Returns True if
    ``until`` was seen.
    """
    deadline = time.monotonic() + idle
    while not session.at_eof():
        lines = session.read_all()
        if not lines:
            if time.monotonic() >= deadline:
                return False
            time.sleep(POLL_INTERVAL)
            continue

        for line in lines:
            write(line)
            if until is not None and until in line:
                return True
        deadline = time.monotonic() + idle
    return False


def _print(line: str) -> None:
    out.print(Text(line), highlight=False, soft_wrap=True)


@click.command()
@click.argument("config_path", type=Path)
@click.option(
    "-c",
    "--command",
    "commands",
    multiple=True,
    help="Command to send, may be repeated. Reads stdin when omitted.",
)
@click.option("--until", type=str, default=None, help="Stop once output contains TEXT.")
@click.option("--idle", type=float, default=1.0, help="Seconds to wait for output.")
@click.option("--force", is_flag=True, help="Kill the debugger instead of quitting.")
@click.option("-v", "--verbose", is_flag=True)
@click.version_option(package_name="jdbsession")
def main(
    config_path: Path,
    *,
    commands: tuple[str, ...],
    until: Optional[str],
    idle: float,
    force: bool,
    verbose: bool,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err, show_time=False)],
    )

    try:
        config = load_config(config_path)
    except TypeCastError as e:
        err.print(e, markup=False, soft_wrap=True)
        raise Exit(1) from None

    session = SessionBuilder.from_config(config).build()
    try:
        session.run()
    except OSError as e:
        msg = f"Unable to start {session.argv[0]}: {e}"
        err.print(msg, markup=False, soft_wrap=True)
        raise Exit(1) from None

    try:
        if commands:
            session.send(*commands)
            pump_output(session, _print, until=until, idle=idle)
        else:
            pump_output(session, _print, idle=idle)
            for line in click.get_text_stream("stdin"):
                if not session.is_running():
                    break
                session.send(line.rstrip("\r\n"))
                if pump_output(session, _print, until=until, idle=idle):
                    break
    finally:
        if force:
            session.force_quit()
        else:
            session.quit()


if __name__ == "__main__":
    main()
