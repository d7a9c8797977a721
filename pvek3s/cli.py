import logging
import sys
import traceback
from pathlib import Path
from typing import Optional

import typer

from pvek3s.commands import cluster, install
from pvek3s.errors import Pvek3sError
from pvek3s.logging import setup_logging
from pvek3s.models import FIRST_PHASE, LAST_PHASE
from pvek3s.modules.state import StateStore

logger = logging.getLogger("pvek3s")

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="K3s Kubernetes cluster (1 control plane + 2 workers) on Proxmox LXC containers.",
)

app.add_typer(install.app, name="install")

# Global debug flag
debug_mode = False


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    list_phases: bool = typer.Option(False, "--list-phases", "-l", help="List all phases"),
    status: bool = typer.Option(False, "--status", "-s", help="Check status of existing containers"),
    start_phase: Optional[int] = typer.Option(
        None, "--start-phase", "-p", metavar="NUM", help="Start from phase NUM (1-7)"
    ),
    resume: bool = typer.Option(False, "--resume", "-r", help="Auto-detect and resume from last completed phase"),
    uninstall: bool = typer.Option(False, "--uninstall", "-u", help="Remove all cluster containers and cleanup"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    state_file: Optional[Path] = typer.Option(None, "--state-file", help="Where to keep the progress record"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """Create, resume, inspect or remove the cluster. Without options runs the interactive setup."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if ctx.invoked_subcommand is not None:
        return

    if list_phases:
        cluster.list_phases()
        return

    if start_phase is not None and not FIRST_PHASE <= start_phase <= LAST_PHASE:
        typer.echo(f"Error: --start-phase requires a number between {FIRST_PHASE} and {LAST_PHASE}", err=True)
        raise typer.Exit(code=1)

    store = StateStore(state_file)
    pve = cluster.get_proxmox()
    try:
        if status:
            cluster.show_status(pve)
        elif uninstall:
            cluster.uninstall(pve, store, yes=yes)
        elif resume or start_phase is not None:
            cluster.resume(pve, store, start_phase=start_phase, yes=yes)
        else:
            cluster.create(pve, store, yes=yes)
    except Pvek3sError as e:
        if debug_mode:
            logger.error(f"Error: {e}\n{traceback.format_exc()}")
        else:
            logger.error(f"❌ {e}")
        raise typer.Exit(code=1)


def run() -> None:
    """Console entry point; usage errors exit with 1 instead of 2."""
    try:
        app()
    except SystemExit as e:
        if e.code == 2:
            sys.exit(1)
        raise


if __name__ == "__main__":
    run()
