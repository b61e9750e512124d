"""Terminal implementations of the PIN prompt and the signing approval."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel

from sign_relay.crypto.vault import PinVault
from sign_relay.wallet.signer import Approver, SigningRequest

T = TypeVar("T")


def _settle(future: asyncio.Future, result: Any, error: BaseException | None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


async def read_terminal(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking terminal read in a daemon thread and await its result.

    ``asyncio.to_thread`` threads are joined when ``asyncio.run`` shuts
    down, so a read still waiting for a line would block Ctrl-C. A daemon
    thread is abandoned instead.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _target() -> None:
        try:
            result, error = func(*args, **kwargs), None
        except Exception as exc:
            result, error = None, exc
        try:
            loop.call_soon_threadsafe(_settle, future, result, error)
        except RuntimeError:
            # Loop already closed; nobody is waiting.
            pass

    threading.Thread(target=_target, name="sign-relay-input", daemon=True).start()
    return await future


class ConsolePinPrompt:
    """Reads the PIN from the terminal without echoing it.

    An empty line (or end of input) dismisses the prompt.
    """

    def __init__(self, console: Console) -> None:
        self._console = console
        self._task: asyncio.Task | None = None
        self._is_open = False

    def open(self, vault: PinVault) -> None:
        if self._task is not None and not self._task.done():
            return
        self._is_open = True
        self._console.print(Panel(
            "This PIN should match the [bold]GIT_SIGNER_PIN[/bold] in your "
            "deployment secrets.\n[dim]Press Enter on an empty line to cancel.[/dim]",
            title="Enter PIN",
        ))
        self._task = asyncio.get_running_loop().create_task(self._read_loop(vault))

    def show_error(self, message: str) -> None:
        self._console.print(f"[red]{message}[/red]")

    def close(self) -> None:
        self._is_open = False

    async def _read_loop(self, vault: PinVault) -> None:
        while self._is_open:
            try:
                pin = await read_terminal(self._console.input, "[bold]PIN: [/bold]", password=True)
            except EOFError:
                pin = ""
            if not pin.strip():
                vault.cancel()
                return
            vault.submit(pin)


def console_approver(console: Console) -> Approver:
    """Build an approver that shows each request and asks for confirmation."""

    async def _approve(request: SigningRequest) -> bool:
        console.print(Panel(
            "\n".join([f"Signer: [cyan]{request.signer}[/cyan]"] + request.details),
            title=f"{request.kind} signing request ({request.network})",
        ))
        return await read_terminal(typer.confirm, "Sign this request?", default=False)

    return _approve
