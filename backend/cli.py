#!/usr/bin/env python3
"""
FileGo CLI

Command-line interface for a decentralized FileGo storage node.

Usage:
    filego start                       # Start a node (+ REST API)
    filego split FILE                  # Split a file into chunks
    filego reassemble FILE_ID OUTPUT   # Rebuild a file from its chunks
    filego status                      # Show local node status
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel
from rich.logging import RichHandler

from config import load_config
from filego.exceptions import FileGoError
from filego.node import FileGoNode

console = Console()


def setup_logging(verbose: bool = False, level_name: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(), default=None,
              help='JSON config file')
@click.option('--data-dir', default=None, help='Data directory')
@click.option('--p2p-port', default=None, type=int, help='Overlay TCP port')
@click.pass_context
def cli(ctx, verbose, config_path, data_dir, p2p_port):
    """FileGo - decentralized file storage node."""
    config = load_config(Path(config_path) if config_path else None)
    if data_dir:
        config.data_dir = Path(data_dir)
    if p2p_port is not None:
        config.p2p_port = p2p_port

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--api-port', default=None, type=int, help='REST API port')
@click.option('--no-api', is_flag=True, help='Disable REST API')
@click.option('--peer', 'peers', multiple=True, help='Peer to dial at startup (host:port)')
@click.option('--no-discovery', is_flag=True, help='Disable periodic discovery')
@click.pass_context
def start(ctx, api_port, no_api, peers, no_discovery):
    """Start a FileGo node."""
    config = ctx.obj['config']
    if api_port is not None:
        config.api_port = api_port
    for peer in peers:
        if peer not in config.peers:
            config.peers.append(peer)
    if no_discovery:
        config.discovery = False

    async def run():
        node = FileGoNode(config.to_node_config())

        try:
            await node.start()

            console.print(Panel.fit(
                f"[bold green]FileGo Node Started[/bold green]\n\n"
                f"Node ID: [cyan]{node.node_id}[/cyan]\n"
                f"P2P Port: [yellow]{node.port}[/yellow]\n"
                f"Peers: [yellow]{len(config.peers)} configured[/yellow]\n"
                f"Data Dir: [blue]{config.data_dir}[/blue]",
                title="Node Info"
            ))

            if not no_api:
                console.print(f"\n[dim]REST API available at http://localhost:{config.api_port}[/dim]")
                console.print(f"[dim]API docs at http://localhost:{config.api_port}/docs[/dim]\n")

                from filego.api import run_api_server
                await run_api_server(node, host=config.host, port=config.api_port)
            else:
                console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
                while True:
                    await asyncio.sleep(1)

        finally:
            await node.stop()
            console.print("[green]Node stopped[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    except FileGoError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--chunk-size', type=int, default=None, help='Chunk size in bytes')
@click.pass_context
def split(ctx, file_path, chunk_size):
    """Split a file into content-addressed chunks."""
    config = ctx.obj['config']
    node = FileGoNode(config.to_node_config())

    async def run():
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Splitting file...", total=None)
            result = await node.chunks.split(Path(file_path), chunk_size)
            progress.update(task, description="Done!")
        return result

    try:
        file_id, chunks = asyncio.run(run())
    except FileGoError as e:
        console.print(f"[red]✗ Split failed: {e}[/red]")
        ctx.exit(1)

    total = sum(c.size for c in chunks)
    console.print(Panel.fit(
        f"[bold green]File Split Successfully[/bold green]\n\n"
        f"Name: [cyan]{Path(file_path).name}[/cyan]\n"
        f"Size: [yellow]{total:,} bytes[/yellow]\n"
        f"Chunks: [yellow]{len(chunks)}[/yellow]\n\n"
        f"[bold]File ID:[/bold]\n"
        f"[green]{file_id}[/green]",
        title="Split File"
    ))

    table = Table(title="Chunks")
    table.add_column("Index", justify="right")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Chunk ID", style="cyan")

    for c in chunks[:20]:
        table.add_row(str(c.index), format_size(c.size), c.id[:16] + "...")

    console.print(table)
    if len(chunks) > 20:
        console.print(f"[dim]... and {len(chunks) - 20} more[/dim]")


@cli.command()
@click.argument('file_id')
@click.argument('output', type=click.Path(dir_okay=False))
@click.pass_context
def reassemble(ctx, file_id, output):
    """Rebuild a split file from its stored chunks."""
    config = ctx.obj['config']
    node = FileGoNode(config.to_node_config())

    async def run():
        chunks = await node.chunks.list_chunks(file_id)
        return await node.chunks.reassemble(file_id, chunks, Path(output))

    try:
        result = asyncio.run(run())
    except FileGoError as e:
        console.print(f"[red]✗ Reassembly failed: {e}[/red]")
        ctx.exit(1)

    console.print(f"[green]✓ Reassembled to: {result}[/green]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show local node status."""
    config = ctx.obj['config']
    node = FileGoNode(config.to_node_config())
    stats = node.get_full_stats()
    storage = stats['chunks']

    console.print(Panel.fit(
        f"[bold]Node Status[/bold]\n\n"
        f"Node ID: [cyan]{stats['node_id']}[/cyan]\n"
        f"P2P Port: [yellow]{config.p2p_port}[/yellow]\n"
        f"API Port: [yellow]{config.api_port}[/yellow]\n"
        f"Configured peers: [yellow]{len(config.peers)}[/yellow]\n\n"
        f"[bold]Storage[/bold]\n"
        f"  Files: [yellow]{storage['files']}[/yellow]\n"
        f"  Chunks: [yellow]{storage['chunks']}[/yellow]\n"
        f"  Size: [yellow]{format_size(storage['bytes'])}[/yellow]",
        title="FileGo Node Status"
    ))

    file_ids = node.chunks.list_files()
    if file_ids:
        table = Table(title="Split Files")
        table.add_column("File ID", style="green")
        for file_id in file_ids:
            table.add_row(file_id)
        console.print(table)


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
