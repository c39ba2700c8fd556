"""CLI entry point for the admin API."""

from __future__ import annotations

import click


@click.group()
def main() -> None:
    """Treetracker Admin API."""


@main.command()
@click.option("--config", default=None, help="TOML config file path")
@click.option("--host", default=None, help="Bind address override")
@click.option("--port", default=None, type=int, help="Port override")
def serve(config: str | None, host: str | None, port: int | None) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api.app import create_app
    from .core.config import load_settings
    from .observability.logger import setup_logging

    settings = load_settings(config_path=config)
    settings.validate_runtime()
    setup_logging(settings.observability.log_level, settings.observability.log_format)

    uvicorn.run(
        create_app(settings),
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_config=None,
    )


@main.command("init-db")
@click.option("--config", default=None, help="TOML config file path")
def init_db(config: str | None) -> None:
    """Create all tables in the configured database (dev/test)."""
    import asyncio

    from .core.config import load_settings
    from .storage.postgres.connection import create_all, create_engine, dispose

    settings = load_settings(config_path=config)

    async def _run() -> None:
        engine = create_engine(settings.database.url, use_null_pool=True)
        try:
            await create_all(engine)
        finally:
            await dispose(engine)

    asyncio.run(_run())
    click.echo("Tables created.")


if __name__ == "__main__":
    main()
