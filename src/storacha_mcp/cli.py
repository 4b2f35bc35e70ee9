"""storacha-mcp CLI - storage tools for MCP clients.

Usage:
    storacha-mcp                      # Serve the tools (transport from MCP_TRANSPORT_MODE)
    storacha-mcp serve --transport sse
    storacha-mcp identity             # Show the agent DID and the default delegation
    storacha-mcp keygen               # Generate a new private key
    storacha-mcp upload <file>        # Upload a local file
    storacha-mcp retrieve <cid>/<name> -o out.bin
"""

from __future__ import annotations

import argparse
import base64
import json
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from . import __version__
from .config import TRANSPORT_MODES, Settings
from .storage import codec
from .storage.delegation import summarize
from .storage.errors import StorageError
from .storage.identity import Signer

# stdout belongs to the stdio transport. Emoji codes are off so "did:key:" prints as-is.
console = Console(stderr=True, emoji=False)
out = Console(emoji=False)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_settings(transport: Optional[str] = None) -> Settings:
    settings = Settings.load()
    if transport:
        settings.transport_mode = transport
    return settings.validate()


def _registry(settings: Settings):
    from .mcp.registry import ToolRegistry

    return ToolRegistry(settings=settings)


def run_serve(settings: Settings) -> int:
    registry = _registry(settings)
    console.print(f"[cyan]Starting storage MCP server in {settings.transport_mode} mode...[/cyan]")

    if settings.transport_mode == "rest":
        from .mcp.rest import serve_rest

        serve_rest(registry)
    else:
        from .mcp.server import serve_from_registry

        serve_from_registry(registry, transport=settings.transport_mode)
    return 0


def run_identity(settings: Settings) -> int:
    registry = _registry(settings)
    result = registry.storage.identity()
    if "id" not in result:
        console.print(f"[red]{result['message']}[/red]")
        return 2

    lines = []
    delegation = registry.storage_config.delegation
    if delegation is None:
        lines.append("[yellow]No default delegation configured.[/yellow]")
    else:
        info = summarize(delegation)
        lines.append(f"[bold]Delegation:[/bold] {info.get('root')}")
        for cap in info.get("capabilities", []):
            lines.append(f"  - {cap}")
        if info.get("expiration"):
            lines.append(f"[bold]Expires:[/bold] {info['expiration']}")
    console.print(Panel("\n".join(lines), title="identity", border_style="cyan"))
    # the DID goes to stdout unwrapped so it can be piped
    out.print(result["id"], soft_wrap=True, markup=False, highlight=False)
    return 0


def run_keygen() -> int:
    signer = Signer.generate()
    console.print(
        Panel(
            f"[bold]DID:[/bold] {signer.did()}\n\n"
            "Add the key below to your environment:\n"
            "  [bold cyan]PRIVATE_KEY=<key>[/bold cyan]",
            title="New agent key",
            border_style="green",
        )
    )
    out.print(signer.format(), soft_wrap=True)
    return 0


def run_upload(
    settings: Settings,
    path: Path,
    name: Optional[str],
    mime: Optional[str],
    filecoin: bool,
) -> int:
    try:
        content = path.read_bytes()
    except OSError as e:
        console.print(f"[red]Cannot read {path}:[/red] {e}")
        return 2

    registry = _registry(settings)
    result = registry.storage.upload(
        file=base64.b64encode(content).decode("ascii"),
        name=name or path.name,
        type=mime,
        publishToFilecoin=filecoin,
    )
    if "root" not in result:
        console.print(f"[red]{result['message']}[/red]")
        return 1

    out.print_json(json.dumps(result))
    return 0


def run_retrieve(settings: Settings, filepath: str, output: Optional[Path], multiformat: bool) -> int:
    registry = _registry(settings)
    result = registry.storage.retrieve(filepath=filepath, useMultiformatBase64=multiformat)
    if "data" not in result:
        console.print(f"[red]{result['message']}[/red]")
        return 1

    if output is None:
        out.print_json(json.dumps(result))
        return 0

    output.write_bytes(codec.decode(result["data"], use_multiformat=multiformat))
    console.print(f"[green]Saved[/green] {output} ({result.get('type') or 'unknown type'})")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="storacha-mcp",
        description="Storacha storage tools for MCP clients: upload, retrieve, identity",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Log level override (default: LOG_LEVEL or INFO)")

    sub = parser.add_subparsers(dest="subcmd")

    p_serve = sub.add_parser("serve", help="Serve the tools over MCP or REST (default)")
    p_serve.add_argument(
        "--transport",
        choices=TRANSPORT_MODES,
        help="Transport override (default: MCP_TRANSPORT_MODE or stdio)",
    )

    sub.add_parser("identity", help="Show the agent DID and default delegation")
    sub.add_parser("keygen", help="Generate a new Ed25519 agent key")

    p_upload = sub.add_parser("upload", help="Upload a local file")
    p_upload.add_argument("path", type=Path, help="File to upload")
    p_upload.add_argument("--name", help="Name to store the file under (default: the file name)")
    p_upload.add_argument("--type", dest="mime", help="MIME type (default: guessed from the name)")
    p_upload.add_argument("--filecoin", action="store_true", help="Also publish to the Filecoin network")

    p_retrieve = sub.add_parser("retrieve", help="Retrieve a file by <cid>/<name>")
    p_retrieve.add_argument("filepath", help="<cid>/<name>, /ipfs/<cid>/<name> or ipfs://<cid>/<name>")
    p_retrieve.add_argument("-o", "--output", type=Path, help="Write the decoded file here")
    p_retrieve.add_argument("--multiformat", action="store_true", help="Return multibase base64")

    args = parser.parse_args(argv)

    if args.subcmd == "keygen":
        configure_logging(args.log_level or "INFO")
        raise SystemExit(run_keygen())

    try:
        settings = _load_settings(getattr(args, "transport", None))
        configure_logging(args.log_level or settings.log_level)

        if args.subcmd == "identity":
            raise SystemExit(run_identity(settings))
        if args.subcmd == "upload":
            raise SystemExit(run_upload(settings, args.path, args.name, args.mime, args.filecoin))
        if args.subcmd == "retrieve":
            raise SystemExit(run_retrieve(settings, args.filepath, args.output, args.multiformat))

        raise SystemExit(run_serve(settings))
    except StorageError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise SystemExit(2)


if __name__ == "__main__":
    main()
