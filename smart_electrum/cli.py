from typing import Dict, List, Optional
from pathlib import Path
import time

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .batch import RequestBatch
from .client import Client
from .config import Settings, get_settings
from .exceptions import ElectrumError, format_error
from .logging_config import setup_logging
from .request import Request, scripthash_from_script
from .response import (
    BalanceResponse, BatchHeaderNotification, ErrorResponse, FeaturesResponse,
    FeeHistogramResponse, HistoryResponse, ListPeersResponse,
    ListUnspentResponse, Response, ScriptHashNotification,
    SingleHeaderNotification
)

app = typer.Typer(help="Query an Electrum server")
console = Console()

@app.callback()
def main(ctx: typer.Context,
         host: Optional[str] = typer.Option(None, help="Electrum server host"),
         port: Optional[int] = typer.Option(None, help="Electrum server port"),
         use_ssl: Optional[bool] = typer.Option(None, "--ssl/--no-ssl", help="Connect over TLS"),
         verify: Optional[bool] = typer.Option(None, "--verify/--no-verify", help="Verify the server certificate"),
         timeout: Optional[float] = typer.Option(None, help="Read and write timeout in seconds"),
         log_level: Optional[str] = typer.Option(None, help="Log level")):
    """Settings come from ELECTRUM_* variables, then from these options"""
    overrides = {
        "host": host,
        "port": port,
        "use_ssl": use_ssl,
        "verify_certificate": verify,
        "read_timeout": timeout,
        "write_timeout": timeout,
        "log_level": log_level,
    }
    try:
        settings = Settings(**{
            **get_settings().model_dump(),
            **{key: value for key, value in overrides.items() if value is not None},
        })
    except ValidationError as e:
        console.print(f"[red]❌ Invalid settings: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    setup_logging(settings.log_level, settings.log_dir)
    ctx.obj = settings

def build_client(settings: Settings) -> Client:
    """Create and connect a client"""
    client = Client.from_settings(settings)
    client.connect_retry(settings.connect_retries, settings.retry_delay)
    return client

def _fail(error: ElectrumError) -> None:
    info = format_error(error)
    console.print(f"[red]❌ {info['error']}: {escape(info['message'])}[/red]")
    raise typer.Exit(code=1)

def _call(ctx: typer.Context, request: Request) -> Response:
    """Run one request on a fresh connection"""
    try:
        client = build_client(ctx.obj)
        try:
            response = client.call(request)
        finally:
            if client.is_connected():
                client.close()
    except ElectrumError as e:
        _fail(e)
    if isinstance(response, ErrorResponse):
        console.print(f"[red]❌ Server error {response.error.code}: {escape(response.error.message)}[/red]")
        raise typer.Exit(code=1)
    return response

def _print_json(response: Response) -> None:
    console.print_json(data=response.model_dump(mode="json"))

def _resolve_scripthash(scripthash: Optional[str], script: Optional[str]) -> str:
    if script:
        try:
            return scripthash_from_script(bytes.fromhex(script))
        except ValueError:
            console.print("[red]❌ --script must be hex encoded[/red]")
            raise typer.Exit(code=1)
    if not scripthash:
        console.print("[red]❌ Give a script hash or --script[/red]")
        raise typer.Exit(code=1)
    return scripthash

@app.command()
def ping(ctx: typer.Context):
    """Ping the server"""
    started = time.time()
    _call(ctx, Request.ping())
    console.print(f"[green]✓ pong in {(time.time() - started) * 1000:.0f} ms[/green]")

@app.command()
def version(ctx: typer.Context):
    """Negotiate the protocol version"""
    settings: Settings = ctx.obj
    response = _call(ctx, Request.version(settings.client_name, settings.protocol_version))
    console.print(f"Server: [cyan]{response.server_software}[/cyan]")
    console.print(f"Protocol: [cyan]{response.protocol_version}[/cyan]")

@app.command()
def banner(ctx: typer.Context):
    """Show the server banner"""
    response = _call(ctx, Request.banner())
    console.print(Panel(escape(response.result), title="Banner"))

@app.command()
def donation(ctx: typer.Context):
    """Show the server donation address"""
    response = _call(ctx, Request.donation())
    console.print(response.address or "[yellow]No donation address[/yellow]")

@app.command()
def features(ctx: typer.Context):
    """Show server features"""
    response: FeaturesResponse = _call(ctx, Request.features())
    result = response.features
    table = Table(title="Server features", box=box.ROUNDED)
    table.add_column("Feature", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Server version", result.server_version)
    table.add_row("Protocol", f"{result.protocol_min} - {result.protocol_max}")
    table.add_row("Genesis hash", result.genesis_hash)
    table.add_row("Hash function", result.hash_function)
    table.add_row("Pruning", str(result.pruning) if result.pruning is not None else "-")
    console.print(table)

@app.command()
def peers(ctx: typer.Context):
    """List peer servers"""
    response: ListPeersResponse = _call(ctx, Request.subscribe_peers())
    table = Table(title="Peers", box=box.ROUNDED)
    table.add_column("Address", style="cyan")
    table.add_column("Host", style="green")
    table.add_column("Features")
    for address, hostname, peer_features in response.peers:
        table.add_row(address, hostname, " ".join(peer_features))
    console.print(table)

@app.command()
def header(ctx: typer.Context, height: int = typer.Argument(..., help="Block height")):
    """Show a raw block header"""
    response = _call(ctx, Request.header(height))
    console.print(response.raw_header)

@app.command()
def headers(ctx: typer.Context,
            start: int = typer.Argument(..., help="First block height"),
            count: int = typer.Argument(..., help="Number of headers")):
    """Show a run of raw block headers"""
    _print_json(_call(ctx, Request.headers(start, count)))

@app.command()
def fee(ctx: typer.Context, target: int = typer.Argument(..., help="Confirmation target in blocks")):
    """Estimate the fee rate for a confirmation target"""
    response = _call(ctx, Request.estimate_fee(target))
    if response.is_sentinel:
        console.print(f"[yellow]No estimate available ({response.fee})[/yellow]")
    else:
        console.print(f"{response.fee:.8f} BTC/kB")

@app.command("relay-fee")
def relay_fee(ctx: typer.Context):
    """Show the minimum relay fee"""
    response = _call(ctx, Request.relay_fee())
    console.print(f"{response.fee} BTC/kB")

@app.command()
def histogram(ctx: typer.Context):
    """Show the mempool fee histogram"""
    response: FeeHistogramResponse = _call(ctx, Request.get_fee_histogram())
    table = Table(title="Mempool fee histogram", box=box.ROUNDED)
    table.add_column("Fee rate (sat/vB)", justify="right", style="cyan")
    table.add_column("Size (vB)", justify="right")
    for rate, size in response.histogram:
        table.add_row(str(rate), str(size))
    console.print(table)

@app.command()
def balance(ctx: typer.Context,
            scripthash: Optional[str] = typer.Argument(None, help="Script hash"),
            script: Optional[str] = typer.Option(None, help="Output script hex, hashed locally")):
    """Show the balance of a script hash"""
    response: BalanceResponse = _call(ctx, Request.sh_get_balance(_resolve_scripthash(scripthash, script)))
    console.print(f"Confirmed: [green]{response.balance.confirmed}[/green] sat")
    console.print(f"Unconfirmed: [yellow]{response.balance.unconfirmed}[/yellow] sat")

@app.command()
def history(ctx: typer.Context,
            scripthash: Optional[str] = typer.Argument(None, help="Script hash"),
            script: Optional[str] = typer.Option(None, help="Output script hex, hashed locally")):
    """Show the transaction history of a script hash"""
    response: HistoryResponse = _call(ctx, Request.sh_get_history(_resolve_scripthash(scripthash, script)))
    table = Table(title="History", box=box.ROUNDED)
    table.add_column("Height", justify="right", style="cyan")
    table.add_column("TXID", style="magenta")
    table.add_column("Fee", justify="right")
    for item in response.history:
        table.add_row(str(item.height), item.tx_hash, str(item.fee) if item.fee is not None else "")
    console.print(table)

@app.command()
def unspent(ctx: typer.Context,
            scripthash: Optional[str] = typer.Argument(None, help="Script hash"),
            script: Optional[str] = typer.Option(None, help="Output script hex, hashed locally")):
    """List the unspent outputs of a script hash"""
    response: ListUnspentResponse = _call(ctx, Request.sh_list_unspent(_resolve_scripthash(scripthash, script)))
    table = Table(title="Unspent outputs", box=box.ROUNDED)
    table.add_column("Value (sat)", justify="right", style="cyan")
    table.add_column("TXID", style="magenta")
    table.add_column("Vout", justify="center")
    table.add_column("Height", justify="right")
    for utxo in sorted(response.unspent, key=lambda x: x.value, reverse=True):
        table.add_row(str(utxo.value), utxo.tx_hash, str(utxo.tx_pos), str(utxo.height))
    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {sum(utxo.value for utxo in response.unspent)} sat")

@app.command()
def tx(ctx: typer.Context,
       txid: str = typer.Argument(..., help="Transaction id"),
       verbose: bool = typer.Option(False, "--verbose", help="Ask for the decoded transaction")):
    """Fetch a transaction"""
    request = Request.tx_get_verbose(txid) if verbose else Request.tx_get(txid)
    response = _call(ctx, request)
    if response.is_verbose:
        _print_json(response)
    else:
        console.print(response.result)

@app.command()
def broadcast(ctx: typer.Context, raw_tx: str = typer.Argument(..., help="Raw transaction hex")):
    """Broadcast a raw transaction"""
    response = _call(ctx, Request.tx_broadcast(raw_tx))
    console.print(f"[green]✓ Broadcast {response.txid}[/green]")

@app.command()
def merkle(ctx: typer.Context,
           txid: str = typer.Argument(..., help="Transaction id"),
           height: int = typer.Argument(..., help="Block height of the transaction")):
    """Fetch the merkle proof of a confirmed transaction"""
    _print_json(_call(ctx, Request.tx_get_merkle(txid, height)))

@app.command()
def batch(ctx: typer.Context, file: Path = typer.Argument(..., help="JSON file holding an array of requests")):
    """Send a batch of requests from a file and print every response"""
    try:
        requests = RequestBatch.load_batch_file(file)
        index = requests.index()
        client = build_client(ctx.obj)
        try:
            client.send_batch(requests)
            waiting = set(index)
            while waiting:
                for response in client.recv(index):
                    _print_json(response)
                    if isinstance(response, ErrorResponse) and response.id is None:
                        # No id to match, the server could not read the batch
                        console.print("[red]❌ Server rejected the batch[/red]")
                        raise typer.Exit(code=1)
                    waiting.discard(getattr(response, "id", None))
        finally:
            if client.is_connected():
                client.close()
    except ElectrumError as e:
        _fail(e)

def _print_event(response: Response) -> None:
    if isinstance(response, SingleHeaderNotification):
        console.print(f"[cyan]Tip[/cyan] {response.header.height}")
    elif isinstance(response, BatchHeaderNotification):
        for tip in response.headers:
            console.print(f"[cyan]New block[/cyan] {tip.height}")
    elif isinstance(response, ScriptHashNotification):
        console.print(f"[magenta]Status[/magenta] {response.scripthash}: {response.status}")
    elif isinstance(response, ErrorResponse):
        console.print(f"[red]Server error {response.error.code}: {escape(response.error.message)}[/red]")
    else:
        _print_json(response)

@app.command()
def watch(ctx: typer.Context,
          scripthash: List[str] = typer.Option([], "--scripthash", help="Script hash to subscribe to"),
          interval: float = typer.Option(1.0, help="Polling interval in seconds"),
          count: Optional[int] = typer.Option(None, help="Stop after this many events")):
    """Subscribe to new blocks and script hashes, then print pushes as they arrive"""
    requests = [Request.subscribe_headers()]
    requests.extend(Request.subscribe_sh(sh).with_id(position + 1) for position, sh in enumerate(scripthash))
    index: Dict[int, Request] = {request.id: request for request in requests}
    seen = 0
    try:
        client = build_client(ctx.obj)
        try:
            client.send_batch(requests)
            while count is None or seen < count:
                responses = client.try_recv(index)
                if responses is None:
                    time.sleep(interval)
                    continue
                for response in responses:
                    _print_event(response)
                    seen += 1
        except KeyboardInterrupt:
            console.print("[yellow]Stopped[/yellow]")
        finally:
            if client.is_connected():
                client.close()
    except ElectrumError as e:
        _fail(e)
