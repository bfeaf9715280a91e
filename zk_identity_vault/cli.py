"""
Command-Line Interface for zk-identity-vault

Operator commands for key generation, identity checks and the membership
group. Configuration comes from the environment and an optional YAML file
(see identity_protocol/settings.py).
"""

import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from zk_identity_vault import __version__
from zk_identity_vault.identity_protocol.codec import generate_key
from zk_identity_vault.identity_protocol.exceptions import IdentityVaultError
from zk_identity_vault.identity_protocol.service import (
    IdentityService,
    Principal,
    build_service,
)
from zk_identity_vault.identity_protocol.settings import Settings, load_settings
from zk_identity_vault.identity_protocol.store import MembershipStore


@dataclass
class CliContext:
    config_path: Optional[str]
    data_dir: Optional[str]
    verbose: bool


def _fail(message: str) -> None:
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)
    sys.exit(1)


@contextmanager
def _errors(ctx: click.Context):
    try:
        yield
    except IdentityVaultError as e:
        if ctx.obj.verbose:
            import traceback
            traceback.print_exc()
        _fail(f"Error: {e}")


def _settings(ctx: click.Context) -> Settings:
    obj: CliContext = ctx.obj
    return load_settings(
        config_file=obj.config_path,
        overrides={"group_data_dir": obj.data_dir},
    )


def _service(ctx: click.Context, audit: bool = True) -> IdentityService:
    return build_service(_settings(ctx), audit=audit)


def _store(ctx: click.Context) -> MembershipStore:
    return _service(ctx, audit=False).store


@click.group()
@click.version_option(version=__version__)
@click.option(
    '--config',
    'config_path',
    type=click.Path(exists=True, dir_okay=False),
    help='YAML settings file (environment variables take precedence)'
)
@click.option(
    '--data-dir',
    type=click.Path(file_okay=False),
    help='Directory holding the group files (overrides GROUP_DATA_DIR)'
)
@click.option(
    '--verbose',
    is_flag=True,
    help='Enable debug logging'
)
@click.pass_context
def main(ctx, config_path, data_dir, verbose):
    """
    zk-identity-vault - deterministic identities and an encrypted
    membership group for zero-knowledge membership proofs.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CliContext(config_path=config_path, data_dir=data_dir, verbose=verbose)


@main.command()
def keygen():
    """Print a fresh 32-byte hex key for ENCRYPTION_KEY."""
    click.echo(generate_key().hex())


@main.command()
@click.pass_context
def status(ctx):
    """Show non-secret configuration and a store summary."""
    with _errors(ctx):
        settings = _settings(ctx)
        store = build_service(settings, audit=False).store
        members = store.member_count()

        table = Table(title="zk-identity-vault status")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        for name, value in settings.describe().items():
            table.add_row(name, str(value))
        table.add_row("primaryFile", "present" if store.primary_path.exists() else "missing")
        table.add_row("backupFile", "present" if store.backup_path.exists() else "missing")
        table.add_row("loadSource", store.last_load_source.value)
        table.add_row("memberCount", str(members))
        Console().print(table)

        if settings.ephemeral_key:
            click.echo(click.style(
                "⚠️  Ephemeral key in use: group data will not survive a restart",
                fg="yellow",
            ))


# ============================================================================
# IDENTITY
# ============================================================================


@main.group()
def identity():
    """Derive and check identities."""
    pass


@identity.command('derive')
@click.option('--subject', required=True, help='Provider subject id (OIDC sub)')
@click.option('--aux', default=None, help='Verified auxiliary identifier (email)')
@click.pass_context
def identity_derive(ctx, subject, aux):
    """Print the commitment for a subject. The private scalar is never shown."""
    with _errors(ctx):
        service = _service(ctx, audit=False)
        click.echo(service.retrieve(Principal(subject, aux)))


@identity.command('verify')
@click.option('--subject', required=True, help='Provider subject id (OIDC sub)')
@click.option('--aux', default=None, help='Verified auxiliary identifier (email)')
@click.option('--commitment', required=True, help='Expected commitment')
@click.pass_context
def identity_verify(ctx, subject, aux, commitment):
    """Check that a subject derives to the expected commitment."""
    with _errors(ctx):
        service = _service(ctx, audit=False)
        matches = service.verify(Principal(subject, aux), commitment)
    if not matches:
        _fail("Commitment does not match")
    click.echo(click.style("✓ Commitment matches", fg="green"))


@main.command()
@click.option('--subject', required=True, help='Provider subject id (OIDC sub)')
@click.option('--aux', default=None, help='Verified auxiliary identifier (email)')
@click.option(
    '--no-register',
    is_flag=True,
    help='Derive and report only; do not add to the group'
)
@click.pass_context
def enroll(ctx, subject, aux, no_register):
    """
    Derive a subject's identity and register its commitment.

    Examples:

        zk-identity-vault enroll --subject "auth0|123"

        zk-identity-vault enroll --subject "auth0|123" --aux a@example.com --no-register
    """
    with _errors(ctx):
        result = _service(ctx).enroll(Principal(subject, aux), register=not no_register)
    click.echo(json.dumps(result.to_dict(), indent=2))


# ============================================================================
# GROUP
# ============================================================================


@main.group()
def group():
    """Inspect and administer the membership group."""
    pass


@group.command('show')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_context
def group_show(ctx, as_json):
    """Show the public group state."""
    with _errors(ctx):
        store = _store(ctx)
        state = store.get_state()

    if as_json:
        payload = state.to_public_dict()
        payload["root"] = state.root
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Group {state.group_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("treeDepth", str(state.tree_depth))
    table.add_row("capacity", str(state.capacity))
    table.add_row("members", str(len(state.members)))
    table.add_row("loadSource", store.last_load_source.value)
    Console().print(table)

    click.echo(f"root: {state.root}")
    for index, member in enumerate(state.members):
        click.echo(f"  [{index}] {member}")


@group.command('root')
@click.pass_context
def group_root(ctx):
    """Print the current Merkle root."""
    with _errors(ctx):
        click.echo(_store(ctx).get_merkle_root())


@group.command('add')
@click.argument('commitment')
@click.pass_context
def group_add(ctx, commitment):
    """Add a commitment to the group."""
    with _errors(ctx):
        added = _store(ctx).add_member(commitment)
    if added:
        click.echo(click.style("✓ Commitment added", fg="green"))
    else:
        click.echo(click.style("Commitment is already a member", fg="yellow"))


@group.command('reset')
@click.pass_context
def group_reset(ctx):
    """Empty the group. The previous revision is kept as backup."""
    with _errors(ctx):
        _store(ctx).reset()
    click.echo(click.style("✓ Group reset", fg="green"))


@group.command('wipe')
@click.confirmation_option(
    prompt='Delete every group file, including backups? This cannot be undone'
)
@click.pass_context
def group_wipe(ctx):
    """Delete all group files. The next load starts a fresh group."""
    with _errors(ctx):
        _store(ctx).complete_reset()
    click.echo(click.style("✓ All group files removed", fg="green"))


if __name__ == '__main__':
    main()
