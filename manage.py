import click


@click.group()
def cli():
    """Management command interface for the notification client and server.

    Provides subcommands for running the reference push server, listening to
    a user's notification stream, editing cached preferences, and project
    maintenance utilities.
    """
    pass


@cli.command()
def runserver():
    """Start the reference push server.

    Uses `runpy` to execute the `main.py` module as a script, which serves
    the FastAPI application with uvicorn on the configured host and port.
    """
    import runpy

    runpy.run_module("main", run_name="__main__")


@cli.command()
@click.option("--user-id", required=True, help="User whose notifications are streamed")
@click.option("--base-url", default=None, help="Override the notification API base URL")
def listen(user_id, base_url):
    """Stream notifications for a user until interrupted.

    Prints a toast line for each notification and the unread badge whenever
    it changes. Reconnects automatically when the server goes away.

    Examples
    --------
    Listen as user 42 against a local server:
        $ python manage.py listen --user-id 42
    """
    import asyncio

    from config.base import get_settings
    from core.infrastructure.logging import setup_logging
    from notifications.infrastructure.factory import create_notification_hub
    from notifications.presentation import ToastPresenter, UnreadBadge

    setup_logging()
    settings = get_settings()
    if base_url:
        settings = settings.model_copy(update={"api_base_url": base_url})

    async def run():
        async with create_notification_hub(settings) as hub:
            UnreadBadge(
                hub, render=lambda label: click.echo(f"🔔 Unread: {label or '0'}")
            ).attach()
            ToastPresenter(hub).attach()

            await hub.initialize(user_id)
            click.echo(f"Listening for notifications of user {user_id} (Ctrl+C to stop)")
            await asyncio.Event().wait()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("Stopped listening.")


@cli.command()
@click.option("--in-app/--no-in-app", default=None, help="Toggle the in-app stream")
@click.option("--sound/--no-sound", default=None, help="Toggle the notification sound")
@click.option("--desktop/--no-desktop", default=None, help="Toggle desktop notifications")
@click.option("--user-id", default=None, help="Also save the change to the server as this user")
def preferences(in_app, sound, desktop, user_id):
    """Show or change the cached notification preferences.

    Without toggles the cached preferences are printed. With toggles they are
    updated locally, and on the server when ``--user-id`` is given.
    """
    import asyncio
    import json

    from config.base import get_settings
    from core.infrastructure.logging import setup_logging
    from notifications.domain.exceptions import NotificationBackendError
    from notifications.infrastructure.factory import create_notification_hub

    setup_logging()

    async def run():
        async with create_notification_hub(get_settings(), user_id=user_id) as hub:
            current = hub.get_preferences()
            changes = {
                key: value
                for key, value in (("enabled", in_app), ("sound", sound), ("desktop", desktop))
                if value is not None
            }
            if not changes:
                return current

            updated = current.model_copy(
                update={"in_app": current.in_app.model_copy(update=changes)}
            )
            if user_id is None:
                hub.save_preferences_locally(updated)
            else:
                await hub.save_preferences(updated)
            return updated

    try:
        result = asyncio.run(run())
    except NotificationBackendError as e:
        raise click.ClickException(f"Saved locally, but the server rejected the change: {e}")

    click.echo(json.dumps(result.to_wire(), indent=2))


@cli.command()
def clean():
    """Remove Python cache and build artifacts.

    Recursively removes __pycache__ directories, .pyc files,
    and Ruff and pytest cache directories to resolve import issues and remove
    clutter from development environment.
    """
    import os
    import shutil

    for root, dirs, files in os.walk("."):
        for dir_name in dirs:
            if dir_name in ("__pycache__", ".ruff_cache", ".pytest_cache"):
                shutil.rmtree(os.path.join(root, dir_name))
        for file_name in files:
            if file_name.endswith(".pyc"):
                os.remove(os.path.join(root, file_name))

    click.echo("Cleaned Python, pytest and Ruff cache directories.")


if __name__ == "__main__":
    """CLI entry point for direct script execution.

    Initializes Click command group and processes command-line arguments
    for development task execution.
    """
    cli()
