"""
Top-level CLI commands: serve.
"""

import os

import typer


def configure_logging(verbose: bool = False):
    """Configure logging for the CLI."""
    from wagate.logger import setup_logging

    log_level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO")
    setup_logging(level=log_level, log_file=os.getenv("LOG_FILE"))


def register_commands(app: typer.Typer):
    """Register top-level commands onto the app."""

    @app.command()
    def serve(
        host: str = typer.Option(None, "--host", help="Bind address"),
        port: int = typer.Option(None, "--port", "-p", help="Bind port"),
        auth_dir: str = typer.Option(
            None, "--auth-dir", help="Credential root directory"
        ),
        bridge_url: str = typer.Option(
            None, "--bridge-url", help="Base URL of the engine sidecar"
        ),
    ):
        """Run the session gateway server."""
        import uvicorn

        from wagate.config import GatewayConfig
        from wagate.server import create_app

        if auth_dir:
            os.environ["WAGATE_AUTH_DIR"] = auth_dir
        if bridge_url:
            os.environ["WAGATE_BRIDGE_URL"] = bridge_url

        config = GatewayConfig.from_env()
        bind_host = host or config.host
        bind_port = port or config.port

        typer.echo(f"🚀 wagate listening on http://{bind_host}:{bind_port}")
        uvicorn.run(
            create_app(config),
            host=bind_host,
            port=bind_port,
            log_level=config.log_level.lower(),
        )
