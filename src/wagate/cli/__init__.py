"""
wagate CLI: multi-session messaging gateway.

This package splits CLI commands into focused modules:
- main:     serve
- sessions: list, status, create, restart, logout, send
"""

import typer

from wagate.cli._http import _http_get, _http_post  # noqa: F401 (re-export for test patching)
from wagate.cli.main import configure_logging, register_commands
from wagate.cli.sessions import sessions_app

app = typer.Typer(help="wagate - multi-session messaging gateway")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    wagate - multi-session messaging gateway.
    """
    configure_logging(verbose)


register_commands(app)

app.add_typer(sessions_app, name="sessions")

if __name__ == "__main__":
    app()
