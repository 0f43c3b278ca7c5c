"""
CLI entry point for btcwatch.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
from dotenv import load_dotenv

from .address import is_valid_address
from .config import Settings, WatchConfig
from .esplora import EsploraClient, InvalidAddress, UpstreamError
from .inference import PaymentObservation
from .ledger import AddressLedger, AddressRecord, RefreshThrottle
from .poller import PollingOrchestrator
from .tip import TipConsensus

app = typer.Typer(
    name="btcwatch",
    help="Bitcoin chain tip and incoming payment watcher",
    add_completion=False,
)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for console output."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


def _echo_observation(obs: PaymentObservation) -> None:
    typer.echo(f"  From:   {obs.from_address}")
    typer.echo(f"  To:     {obs.to_address}")
    typer.echo(f"  Amount: {obs.amount} sats ({obs.amount / 1e8:.8f} BTC)")
    typer.echo(f"  Block:  {obs.block_height or 'unconfirmed'}")
    typer.echo(f"  TXID:   {obs.txid}")
    if obs.change_address:
        typer.echo(f"  Change: {obs.change_address}")
    typer.echo("")


def _require_valid(address: str) -> str:
    address = address.strip()
    if not is_valid_address(address):
        typer.echo(f"Invalid address: {address}", err=True)
        raise typer.Exit(1)
    return address


@app.command()
def tip(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
) -> None:
    """
    Query both tip sources and show the resulting tag.
    """
    settings = WatchConfig.from_env(config_path).settings
    configure_logging(settings.log_level)

    async def _tip() -> None:
        consensus = TipConsensus.from_urls(
            settings.tip_source_urls, timeout=settings.http_timeout_seconds
        )
        try:
            results = await consensus.refresh()
        finally:
            await consensus.close()

        for source, result in zip(consensus.sources, results):
            if result is None:
                typer.echo(f"✗ {source.name}: no tip")
            else:
                typer.echo(f"✓ {source.name}: {result.height} {result.hash}")
        typer.echo(f"Tag: {consensus.tag()}")

    asyncio.run(_tip())


@app.command()
def balance(
    address: str = typer.Argument(..., help="Bitcoin address"),
    api_url: Optional[str] = typer.Option(None, "--api", help="Esplora API URL"),
) -> None:
    """
    Show the confirmed balance of an address.
    """
    settings = Settings()
    configure_logging(settings.log_level)

    async def _balance() -> int:
        async with EsploraClient(
            api_url or settings.balance_api_url, timeout=settings.http_timeout_seconds
        ) as client:
            return await client.get_balance(address)

    try:
        sats = asyncio.run(_balance())
    except (InvalidAddress, UpstreamError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"{address.strip()}: {sats} sats ({sats / 1e8:.8f} BTC)")


@app.command()
def senders(
    address: str = typer.Argument(..., help="Tracked (receiving) Bitcoin address"),
    api_url: Optional[str] = typer.Option(None, "--api", help="Esplora API URL"),
    pages: int = typer.Option(1, "--pages", help="History pages to fetch"),
) -> None:
    """
    Show who most likely paid an address.
    """
    settings = Settings()
    configure_logging(settings.log_level)
    address = _require_valid(address)

    async def _fetch() -> AddressRecord:
        async with EsploraClient(
            api_url or settings.esplora_api_url,
            timeout=settings.http_timeout_seconds,
            max_pages=pages,
        ) as client:
            ledger = AddressLedger()
            record = ledger.ensure(address)
            ledger.record_success(record, await client.get_address_txs(address))
            return record

    try:
        record = asyncio.run(_fetch())
    except UpstreamError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    found = record.senders()
    if not found:
        typer.echo("No payments found.")
        return

    typer.echo(f"Found {len(found)} likely senders:\n")
    for obs in found.values():
        _echo_observation(obs)


@app.command()
def watch(
    addresses: list[str] = typer.Argument(None, help="Mainnet addresses to watch"),
    testnet: list[str] = typer.Option([], "--testnet", "-t", help="Testnet address to watch"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
    once: bool = typer.Option(False, "--once", help="Run one cycle and exit"),
) -> None:
    """
    Watch addresses for incoming payments.
    """
    config = WatchConfig.from_env(config_path)
    settings = config.settings
    configure_logging(settings.log_level)

    for address in addresses or []:
        config.add_address(_require_valid(address), "mainnet")
    for address in testnet:
        config.add_address(_require_valid(address), "testnet")

    if not config.mainnet_addresses and not config.testnet_addresses:
        typer.echo("Warning: No addresses to watch.")

    async def _watch() -> None:
        ledger = AddressLedger(RefreshThrottle(settings.min_refresh_interval_seconds))
        consensus = TipConsensus.from_urls(
            settings.tip_source_urls, timeout=settings.http_timeout_seconds
        )
        mainnet = EsploraClient(
            settings.esplora_api_url,
            timeout=settings.http_timeout_seconds,
            max_pages=settings.max_pages,
        )
        testnet_client = EsploraClient(
            settings.testnet_esplora_api_url,
            timeout=settings.http_timeout_seconds,
            max_pages=settings.max_pages,
        )
        poller = PollingOrchestrator(
            ledger,
            mainnet,
            testnet_fetcher=testnet_client,
            tip=consensus,
            poll_interval_seconds=settings.poll_interval_seconds,
            tip_refresh_seconds=settings.tip_refresh_seconds,
        )

        seen: set[tuple[str, str]] = set()

        def on_ledger(records: dict[str, AddressRecord]) -> None:
            for record in records.values():
                for obs in record.senders().values():
                    key = (obs.txid, obs.from_address)
                    if key in seen:
                        continue
                    seen.add(key)
                    typer.echo(f"Payment to {obs.to_address} (tip {consensus.tag()[1] or 'unknown'}):")
                    _echo_observation(obs)

        ledger.records.subscribe(on_ledger)

        try:
            if once:
                await poller.run_once(config.worklists())
            else:
                await poller.run(config.worklists)
        finally:
            await mainnet.close()
            await testnet_client.close()
            await consensus.close()

    if once:
        typer.echo("Running in single-shot mode...")
    else:
        typer.echo("Running in continuous mode. Press Ctrl+C to stop.")

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        typer.echo("\nStopping watcher...")


@app.command()
def version() -> None:
    """Show the btcwatch version."""
    from btcwatch import __version__

    typer.echo(f"btcwatch v{__version__}")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
