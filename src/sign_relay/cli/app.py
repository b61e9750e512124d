"""CLI for sign-relay - answer deployment signing requests from your terminal."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sign_relay.config import (
    RelayConfig,
    default_config_path,
    load_config_or_default,
    save_config,
)

app = typer.Typer(
    name="sign-relay",
    help="Sign deployment requests with your wallet, relayed over the Sui ledger.",
    no_args_is_help=True,
)
console = Console()

_config_path: Optional[Path] = None
_verbose: bool = False


def _version_callback(value: bool):
    if value:
        from sign_relay import __version__
        console.print(f"sign-relay {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (default: ./.sign-relay/config.yaml)",
        envvar="SIGN_RELAY_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Sign deployment requests with your wallet, relayed over the Sui ledger."""
    global _config_path, _verbose
    _config_path = config
    _verbose = verbose


def _load_config() -> RelayConfig:
    try:
        config = load_config_or_default(_config_path)
    except Exception as e:
        console.print(f"[red]Invalid config: {e}[/red]")
        raise typer.Exit(1)
    level = logging.DEBUG if _verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(name)s: %(message)s")
    return config


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _apply_overrides(
    config: RelayConfig,
    network: Optional[str],
    rpc_url: Optional[str],
) -> RelayConfig:
    from sign_relay.chain.networks import get_network

    if network:
        config.network.name = network
    if rpc_url:
        config.network.rpc_url = rpc_url
    try:
        get_network(config.network.name)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(1)
    return config


# ------------------------------------------------------------------
# watch
# ------------------------------------------------------------------


@app.command()
def watch(
    ephemeral_address: str = typer.Argument(help="Ephemeral address the deployment script sends from (0x...)"),
    network: str = typer.Option(None, "--network", "-n", help="Network to watch (devnet, testnet, mainnet, localnet)"),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Full node JSON-RPC URL override"),
    keystore: Path = typer.Option(None, "--keystore", "-k", help="Sui keystore file"),
    address: str = typer.Option(None, "--address", "-a", help="Wallet address to sign with"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Sign every request without asking"),
    poll_interval: float = typer.Option(None, "--poll-interval", help="Seconds between polls"),
):
    """Relay signing requests for EPHEMERAL_ADDRESS until the deployment completes."""
    from sign_relay.chain.client import SuiRpcClient
    from sign_relay.chain.networks import get_network
    from sign_relay.cli.prompt import ConsolePinPrompt, console_approver
    from sign_relay.crypto.codec import CryptoCodec
    from sign_relay.crypto.vault import PinVault
    from sign_relay.relay.session import RelaySession, RelayState
    from sign_relay.wallet.keystore import load_keypair
    from sign_relay.wallet.signer import KeystoreWallet
    from sign_relay.wire.bcs import normalize_address

    config = _apply_overrides(_load_config(), network, rpc_url)
    if keystore:
        config.wallet.keystore_path = str(keystore)
    if address:
        config.wallet.address = address
    if yes:
        config.wallet.auto_approve = True
    if poll_interval is not None:
        config.polling.interval_seconds = poll_interval

    try:
        ephemeral = normalize_address(ephemeral_address)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    try:
        keypair = load_keypair(Path(config.wallet.keystore_path).expanduser(), config.wallet.address)
    except (FileNotFoundError, KeyError, ValueError) as e:
        console.print(f"[red]Wallet not available: {e}[/red]")
        raise typer.Exit(1)

    net = get_network(config.network.name)
    console.print(Panel(
        f"Ephemeral address: [cyan]{ephemeral}[/cyan]\n"
        f"Wallet: [cyan]{keypair.address}[/cyan]\n"
        f"Network: {net.name} ({config.network.resolve_rpc_url()})",
        title="Authenticate Deployment",
    ))

    def _on_status(status: RelayState, text: str) -> None:
        style = "red" if status is RelayState.ERROR else "dim"
        console.print(f"[{style}]{status.value}[/{style}] {text}")

    def _on_reply(intent: str, digest: str) -> None:
        console.print(f"[green]Published[/green] {intent} reply: [cyan]{net.explorer_tx_url(digest)}[/cyan]")

    async def _watch():
        codec = CryptoCodec()
        approver = None if config.wallet.auto_approve else console_approver(console)
        wallet = KeystoreWallet(keypair, approver=approver)
        vault = PinVault(ConsolePinPrompt(console), codec=codec)
        async with SuiRpcClient(
            config.network.resolve_rpc_url(), timeout=config.network.request_timeout
        ) as chain:
            session = RelaySession(
                ephemeral,
                chain,
                wallet,
                vault,
                codec=codec,
                poll_interval=config.polling.interval_seconds,
                gas_budget=config.polling.gas_budget,
                finality_timeout=config.polling.finality_timeout,
                on_status=_on_status,
                on_reply=_on_reply,
            )
            return await session.run(), session.state.replies

    try:
        url, replies = _run(_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
        raise typer.Exit(130)

    if url:
        console.print(Panel(
            f"[bold green]Deployment complete[/bold green]\n\n"
            f"Site: [cyan]{url}[/cyan]\n"
            f"[dim]{len(replies)} signed replies published.[/dim]",
            title="Done",
        ))


# ------------------------------------------------------------------
# inspect
# ------------------------------------------------------------------


@app.command()
def inspect(
    digest: str = typer.Argument(help="Transaction digest to decrypt"),
    network: str = typer.Option(None, "--network", "-n", help="Network the transaction is on"),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Full node JSON-RPC URL override"),
):
    """Decrypt and show the relay payload carried by a transaction."""
    from sign_relay.chain.client import SuiRpcClient
    from sign_relay.crypto.codec import decrypt
    from sign_relay.errors import DecryptionError, RelayError
    from sign_relay.wire.chunks import unpack

    config = _apply_overrides(_load_config(), network, rpc_url)

    async def _fetch():
        async with SuiRpcClient(
            config.network.resolve_rpc_url(), timeout=config.network.request_timeout
        ) as chain:
            return await chain.get_transaction(digest)

    try:
        tx = _run(_fetch())
        envelope = unpack(tx.inputs)
    except RelayError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"Sender: [cyan]{tx.sender}[/cyan]  Envelope: {len(envelope)} bytes")
    pin = console.input("[bold]PIN: [/bold]", password=True)
    try:
        plaintext = decrypt(envelope, pin.strip())
    except DecryptionError:
        console.print("[red]Invalid PIN.[/red]")
        raise typer.Exit(1)

    try:
        console.print_json(json.dumps(json.loads(plaintext)))
    except ValueError:
        console.print(plaintext.hex())


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Inspect the operator wallet.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("addresses")
def wallet_addresses(
    keystore: Path = typer.Option(None, "--keystore", "-k", help="Sui keystore file"),
):
    """List the Ed25519 addresses available in the keystore."""
    from sign_relay.wallet.keystore import list_addresses

    config = _load_config()
    path = keystore or Path(config.wallet.keystore_path).expanduser()
    try:
        addresses = list_addresses(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not addresses:
        console.print(f"[yellow]No Ed25519 keys in {path}.[/yellow]")
        return

    table = Table(title=str(path))
    table.add_column("Address", style="cyan")
    table.add_column("Selected")
    for addr in addresses:
        table.add_row(addr, "[green]yes[/green]" if addr == config.wallet.address else "")
    console.print(table)


# ------------------------------------------------------------------
# config sub-commands
# ------------------------------------------------------------------

config_app = typer.Typer(
    name="config",
    help="Manage the relay configuration file.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


@config_app.command("init")
def config_init(
    network: str = typer.Option("devnet", "--network", "-n", help="Default network"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """Write a default config file."""
    path = _config_path or default_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    config = RelayConfig()
    config.network.name = network
    save_config(config, path)
    console.print(f"Config written to [cyan]{path}[/cyan]")


@config_app.command("show")
def config_show():
    """Print the effective configuration."""
    config = _load_config()
    console.print_json(config.model_dump_json())
