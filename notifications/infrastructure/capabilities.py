import asyncio
import sys

import click
from loguru import logger

from ..application.ports import (
    AudioPlayback,
    DesktopNotificationHandle,
    DesktopNotifications,
)
from ..domain.entities import PermissionState


class ConsoleNotificationHandle(DesktopNotificationHandle):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            logger.debug(f"Desktop notification {self.tag} dismissed")


class ConsoleDesktopNotifications(DesktopNotifications):
    """Desktop notifications rendered as highlighted lines in the terminal.

    Permission is asked once through an interactive prompt. Without a
    terminal the permission stays ``default`` and nothing is shown.

    Parameters
    ----------
    permission : PermissionState
        Initial permission state.
    interactive : bool | None
        Whether prompting is possible; detected from stdin when None.
    """

    def __init__(
        self,
        permission: PermissionState = PermissionState.DEFAULT,
        interactive: bool | None = None,
    ) -> None:
        self._permission = permission
        self._interactive = sys.stdin.isatty() if interactive is None else interactive

    @property
    def available(self) -> bool:
        return True

    def permission(self) -> PermissionState:
        return self._permission

    async def request_permission(self) -> PermissionState:
        if self._permission != PermissionState.DEFAULT or not self._interactive:
            return self._permission

        granted = await asyncio.to_thread(
            click.confirm, "Show desktop notifications in this terminal?", default=True
        )
        self._permission = PermissionState.GRANTED if granted else PermissionState.DENIED
        return self._permission

    def show(
        self,
        title: str,
        *,
        body: str,
        tag: str,
        link_url: str | None = None,
    ) -> DesktopNotificationHandle:
        click.echo(f"{click.style(title, fg='cyan', bold=True)}  {body}")
        if link_url:
            click.echo(click.style(f"  ↳ {link_url}", dim=True))
        return ConsoleNotificationHandle(tag)


class UnavailableDesktopNotifications(DesktopNotifications):
    """Stand-in for platforms without desktop notifications."""

    @property
    def available(self) -> bool:
        return False

    def permission(self) -> PermissionState:
        return PermissionState.DENIED

    async def request_permission(self) -> PermissionState:
        return PermissionState.DENIED

    def show(self, title, *, body, tag, link_url=None) -> DesktopNotificationHandle:
        raise RuntimeError("Desktop notifications are not available")


class TerminalBellAudio(AudioPlayback):
    """Plays the notification sound as a terminal bell."""

    def __init__(self, enabled: bool | None = None) -> None:
        self._enabled = sys.stdout.isatty() if enabled is None else enabled

    @property
    def available(self) -> bool:
        return self._enabled

    async def play(self, source: str, volume: float) -> None:
        if volume <= 0:
            return
        logger.debug(f"Playing {source} as terminal bell")
        click.echo("\a", nl=False)


class UnavailableAudio(AudioPlayback):
    @property
    def available(self) -> bool:
        return False

    async def play(self, source: str, volume: float) -> None:
        raise RuntimeError("Audio playback is not available")
