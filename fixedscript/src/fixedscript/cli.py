"""
Command-line interface for inspecting fixed-script wallets and PSBTs.
"""

from __future__ import annotations

import sys

import typer
from loguru import logger

from fixedscript.dimensions import Dimensions
from fixedscript.engine import init
from fixedscript.errors import FixedScriptError
from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt
from fixedscript.psbt.parser import parse_transaction_with_wallet_keys
from fixedscript.wallet.address import output_script_to_address
from fixedscript.wallet.chains import KeyRole, SignPath
from fixedscript.wallet.scripts import WalletScripts

app = typer.Typer(
    name="fixedscript",
    help="Fixed-script multisig wallet PSBT tools",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _network(name: str) -> Network:
    try:
        return Network.from_name(name)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def address(
    xpubs: list[str] = typer.Argument(..., help="user, backup and bitgo xpubs"),
    chain: int = typer.Option(0, "--chain", "-c", help="Chain code"),
    index: int = typer.Option(0, "--index", "-i", help="Derivation index"),
    network: str = typer.Option("bitcoin", "--network", "-n", help="Network name"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Derive the wallet address at (chain, index)."""
    setup_logging(log_level)
    net = _network(network)

    try:
        wallet = init().root_wallet_keys(xpubs)
        scripts = WalletScripts.from_wallet_keys(wallet, chain, index, net)
        typer.echo(output_script_to_address(scripts.output_script, net))
    except (FixedScriptError, ValueError) as e:
        logger.error(f"Failed to derive address: {e}")
        raise typer.Exit(1)


@app.command()
def parse(
    psbt: str = typer.Argument(..., help="PSBT as base64 or hex"),
    xpubs: list[str] = typer.Option(..., "--xpub", "-x", help="Wallet xpub (repeat 3 times)"),
    network: str = typer.Option("bitcoin", "--network", "-n", help="Network name"),
    replay_protection: list[str] = typer.Option(
        [], "--replay-protection", "-r", help="Replay protection pubkey (hex)"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Parse a PSBT against the wallet keys and print a summary."""
    setup_logging(log_level)
    net = _network(network)

    try:
        wallet = init().root_wallet_keys(xpubs)
        try:
            container = BitGoPsbt.deserialize(bytes.fromhex(psbt), net, wallet)
        except ValueError:
            container = BitGoPsbt.from_base64(psbt, net, wallet)
        parsed = parse_transaction_with_wallet_keys(
            container, wallet, public_keys=[bytes.fromhex(pk) for pk in replay_protection]
        )
    except (FixedScriptError, ValueError) as e:
        logger.error(f"Failed to parse PSBT: {e}")
        raise typer.Exit(1)

    typer.echo(f"txid: {container.unsigned_txid()}")
    typer.echo(f"inputs ({len(parsed.inputs)}):")
    for inp in parsed.inputs:
        where = (
            f"chain={inp.script_id.chain} index={inp.script_id.index}"
            if inp.script_id
            else "replay protection"
        )
        typer.echo(f"  {inp.txid}:{inp.vout} {inp.value} sat {inp.script_type.value} ({where})")
    typer.echo(f"outputs ({len(parsed.outputs)}):")
    for out in parsed.outputs:
        owner = (
            "external"
            if out.is_external
            else f"wallet chain={out.script_id.chain} index={out.script_id.index}"
        )
        typer.echo(f"  {out.address or out.script.hex()} {out.value} sat ({owner})")
    typer.echo(f"spend amount: {parsed.spend_amount} sat")
    typer.echo(f"miner fee: {parsed.miner_fee} sat")
    typer.echo(f"virtual size: {parsed.virtual_size} vB")


@app.command()
def dimensions(
    chains: list[int] = typer.Option([], "--chain", "-c", help="Input chain code (repeatable)"),
    script_types: list[str] = typer.Option(
        [], "--script-type", "-t", help="Input script type (repeatable)"
    ),
    outputs: list[str] = typer.Option(
        [], "--output-type", "-o", help="Output script type (repeatable)"
    ),
    recovery: bool = typer.Option(False, "--recovery", help="Inputs are signed with the backup key"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Estimate the weight and virtual size of a wallet transaction."""
    setup_logging(log_level)
    sign_path = SignPath(KeyRole.USER, KeyRole.BACKUP) if recovery else None

    try:
        total = Dimensions.empty()
        for chain in chains:
            total = total + Dimensions.from_input(chain=chain, sign_path=sign_path)
        for script_type in script_types:
            total = total + Dimensions.from_input(script_type=script_type)
        for output_type in outputs:
            total = total + Dimensions.from_output(script_type=output_type)
    except (FixedScriptError, ValueError) as e:
        logger.error(f"Invalid dimensions: {e}")
        raise typer.Exit(1)

    typer.echo(f"weight: {total.get_weight('min')}-{total.get_weight('max')}")
    typer.echo(f"vsize: {total.get_vsize('min')}-{total.get_vsize('max')}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
