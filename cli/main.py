#!/usr/bin/env python3
"""
Taproot Relayer - Command Line Interface

Write payloads to Bitcoin with Taproot commit/reveal transactions and read
them back by transaction or block height.
"""

import functools
import json
import logging
import sys
from typing import Any, Optional

import click

from crypto.exceptions import CryptoError
from network.rpc import RPCError
from relayer.config import KeyMaterial, RelayerConfig, load_config
from relayer.exceptions import RelayerError
from relayer.ledger import LedgerService
from relayer.relayer import Relayer
from scripts.envelope import EncodingError, script_to_asm
from transactions.exceptions import TransactionError


__version__ = "0.1.0"

logger = logging.getLogger('relayer-cli')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self, ledger: Optional[LedgerService] = None):
        self.config_file: Optional[str] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.network: Optional[str] = None
        self.config: Optional[RelayerConfig] = None
        self.ledger = ledger

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        root = logging.getLogger()
        if not any(getattr(h, '_relayer_cli', False) for h in root.handlers):
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            handler._relayer_cli = True
            root.addHandler(handler)
        root.setLevel(level)

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self) -> RelayerConfig:
        """Resolve configuration once per invocation."""
        if self.config is None:
            self.config = load_config(self.config_file, overrides={'network': self.network})
            logger.debug(f"Configuration loaded for network {self.config.network}")
        return self.config

    def get_relayer(self) -> Relayer:
        return Relayer.from_config(self.load_config(), ledger=self.ledger)

    def output(self, data: Any):
        """Output data in the selected format."""
        if self.output_format == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        if isinstance(data, dict):
            for key, value in data.items():
                click.echo(f"{key:20} {value}")
        elif isinstance(data, list):
            if not data:
                click.echo("(none)")
            for item in data:
                if isinstance(item, dict):
                    click.echo(" | ".join(f"{key}={value}" for key, value in item.items()))
                else:
                    click.echo(str(item))
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Report relayer errors on stderr and exit non-zero."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RelayerError, TransactionError, CryptoError, EncodingError, RPCError) as e:
            logger.error(f"{type(e).__name__}: {e}")
            click.echo(f"Error: {e}", err=True)
            ctx = click.get_current_context().find_object(CLIContext)
            if ctx is None or ctx.verbose < 2:
                click.echo("Use -vv for detailed error information.", err=True)
            sys.exit(1)

    return wrapper


def describe_payload(payload: bytes) -> dict:
    """Hex and, when printable, UTF-8 text views of a payload."""
    result = {'size': len(payload), 'hex': payload.hex()}
    try:
        text = payload.decode('utf-8')
    except UnicodeDecodeError:
        return result
    if text.isprintable():
        result['text'] = text
    return result


def read_payload_argument(data: Optional[str], file_path: Optional[str], hex_data: Optional[str]) -> bytes:
    """Resolve exactly one of DATA, --file or --hex to bytes."""
    sources = [value for value in (data, file_path, hex_data) if value is not None]
    if len(sources) != 1:
        raise click.UsageError("Provide exactly one of DATA, --file or --hex")

    if file_path is not None:
        with open(file_path, 'rb') as f:
            return f.read()
    if hex_data is not None:
        try:
            return bytes.fromhex(hex_data)
        except ValueError as e:
            raise click.BadParameter(f"Invalid hex: {e}", param_hint='--hex')
    return data.encode('utf-8')


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c',
              type=click.Path(exists=True, dir_okay=False),
              help='Path to YAML or JSON configuration file')
@click.option('--network', '-n',
              type=click.Choice(['bitcoin', 'testnet', 'testnet4', 'signet', 'regtest']),
              help='Network (overrides configuration)')
@click.option('--output-format', '-o',
              type=click.Choice(['table', 'json']),
              default='table',
              help='Output format')
@click.option('--verbose', '-v',
              count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(__version__, prog_name='relayer')
@pass_context
def cli(ctx: CLIContext, config_file: Optional[str], network: Optional[str],
        output_format: str, verbose: int):
    """
    Taproot commit/reveal data relayer

    Embeds arbitrary data in a Taproot script leaf, commits to it with one
    transaction and reveals it with a script path spend.

    Examples:
        relayer write "hello"
        relayer read-tx <txid>
        relayer read 120
    """
    ctx.config_file = config_file
    ctx.network = network
    ctx.output_format = output_format
    ctx.verbose = verbose

    ctx.setup_logging()


@cli.command()
@click.argument('data', required=False)
@click.option('--file', '-f', 'file_path', type=click.Path(exists=True, dir_okay=False),
              help='Read the payload from a file')
@click.option('--hex', 'hex_data', help='Payload as hex')
@pass_context
@handle_cli_error
def write(ctx: CLIContext, data: Optional[str], file_path: Optional[str], hex_data: Optional[str]):
    """Write DATA to the ledger and print the reveal transaction ID."""
    payload = read_payload_argument(data, file_path, hex_data)

    with ctx.get_relayer() as relayer:
        txid = relayer.write(payload)

    ctx.output({'txid': txid, 'size': len(payload)})


@cli.command('read-tx')
@click.argument('txid')
@pass_context
@handle_cli_error
def read_tx(ctx: CLIContext, txid: str):
    """Print the payload revealed by transaction TXID."""
    with ctx.get_relayer() as relayer:
        payload = relayer.read_transaction(txid)

    ctx.output({'txid': txid, **describe_payload(payload)})


@cli.command()
@click.argument('height', type=click.IntRange(min=0))
@pass_context
@handle_cli_error
def read(ctx: CLIContext, height: int):
    """Print every payload revealed in the block at HEIGHT."""
    with ctx.get_relayer() as relayer:
        payloads = relayer.read_height(height)

    ctx.output([{'index': index, **describe_payload(payload)} for index, payload in enumerate(payloads)])


@cli.command()
@click.argument('data', required=False)
@click.option('--file', '-f', 'file_path', type=click.Path(exists=True, dir_okay=False),
              help='Read the payload from a file')
@click.option('--hex', 'hex_data', help='Payload as hex')
@pass_context
@handle_cli_error
def address(ctx: CLIContext, data: Optional[str], file_path: Optional[str], hex_data: Optional[str]):
    """Show the commitment address for DATA without broadcasting anything."""
    payload = read_payload_argument(data, file_path, hex_data)
    config = ctx.load_config()

    relayer = Relayer(
        ledger=ctx.ledger,
        key_material=KeyMaterial.from_config(config),
        protocol_id=config.protocol_id,
        network=config.network,
    )
    commitment_address, commitment = relayer.create_taproot_address(relayer.tag(payload))

    ctx.output({
        'address': commitment_address,
        'output_key': commitment.output_key.hex(),
        'control_block': commitment.control_block.hex(),
        'script_size': len(commitment.leaf.script),
        'script': script_to_asm(commitment.leaf.script),
    })


def main():
    cli(prog_name='relayer')


if __name__ == '__main__':
    main()
