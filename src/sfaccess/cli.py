from __future__ import annotations

import functools
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import click
from tqdm import tqdm

from . import __version__
from .env_loader import load_env_files
from .exceptions import MissingCredentialsError, SalesforceError
from .logging_config import configure_logging
from .pagination import PageToken
from .resources import RESOURCE_TYPE_USER, RESOURCE_TYPES, Resource, ResourceId, new_grant
from .sync import SalesforceConnector, iter_pages, new_connector
from .sync.users import UserSyncer

_logger = logging.getLogger(__name__)

_CREDENTIALS_HINT = (
    "Set these environment variables (or create a .env file), e.g. for "
    "client-credentials auth:\n"
    "  SF_AUTH_FLOW=client_credentials\n"
    "  SF_CLIENT_ID=...             # Connected App Consumer Key\n"
    "  SF_CLIENT_SECRET=...         # Connected App Client Secret\n"
    "  SF_LOGIN_URL=https://login.salesforce.com  # or your custom domain URL\n"
    "or, with an existing session:\n"
    "  SF_AUTH_FLOW=token\n"
    "  SF_ACCESS_TOKEN=...\n"
    "  SF_INSTANCE_URL=https://yourorg.my.salesforce.com\n\n"
    "Tip: run `sfaccess login --help` for more details on configuration."
)

RESOURCE_TYPE_CHOICE = click.Choice(sorted(RESOURCE_TYPES))


def _salesforce_errors(func: Callable) -> Callable:
    """Turn library errors into click errors with a readable message."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except MissingCredentialsError as e:
            needed = ", ".join(e.missing)
            raise click.ClickException(
                f"Missing Salesforce credentials: {needed}\n\n{_CREDENTIALS_HINT}"
            ) from e
        except SalesforceError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _connector(ctx: click.Context) -> SalesforceConnector:
    if ctx.obj is None:
        ctx.obj = new_connector()
    return ctx.obj


def _stub_resource(resource_type: str, resource_id: str) -> Resource:
    return Resource(ResourceId(resource_type, resource_id), resource_id)


def _echo_json(obj: Any, pretty: bool = False) -> None:
    click.echo(json.dumps(obj, indent=2 if pretty else None, default=str))


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="sfaccess")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.pass_context
def cli(ctx: click.Context, loglevel: Optional[int]) -> None:
    """Salesforce identity and access sync. Use subcommands like 'login' or 'list'."""
    configure_logging(loglevel)
    load_env_files(quiet=loglevel is None)
    _logger.debug("CLI start, version=%s", __version__)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("login")
@click.pass_context
@_salesforce_errors
def cmd_login(ctx: click.Context) -> None:
    """Validate credentials and show who we are connected as."""
    connector = _connector(ctx)
    info, annotations = connector.validate()
    click.echo(f"✅ Connected as: {info.user.email} ({info.company.name})")
    click.echo(f"Instance: {connector.client.api.instance_url}  API: {connector.client.api.api_version}")
    for rl in annotations.rate_limits():
        click.echo(f"API usage: {rl.remaining}/{rl.limit} ({rl.status.value})")


@cli.command("query")
@click.argument("soql")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
@click.pass_context
@_salesforce_errors
def cmd_query(ctx: click.Context, soql: str, pretty: bool) -> None:
    """Run a raw SOQL query and print the first page."""
    _echo_json(_connector(ctx).client.api.query(soql), pretty)


def _page_options(func: Callable) -> Callable:
    func = click.option("--page-size", type=int, default=0, show_default=True, help="Records per page (0: default).")(func)
    func = click.option("--token", default="", help="Continue from this page token.")(func)
    func = click.option("--all", "fetch_all", is_flag=True, help="Follow page tokens to the end.")(func)
    return func


def _emit_pages(fetch: Callable[[PageToken], Any], token: str, page_size: int, fetch_all: bool) -> None:
    if fetch_all:
        for item in iter_pages(fetch, page_size):
            _echo_json(item.to_dict())
        return
    page = fetch(PageToken(token, page_size))
    for item in page.items:
        _echo_json(item.to_dict())
    if page.next_token:
        click.echo(f"next token: {page.next_token}", err=True)


@cli.command("list")
@click.argument("resource_type", type=RESOURCE_TYPE_CHOICE)
@_page_options
@click.pass_context
@_salesforce_errors
def cmd_list(ctx: click.Context, resource_type: str, page_size: int, token: str, fetch_all: bool) -> None:
    """List resources of RESOURCE_TYPE, one JSON object per line."""
    syncer = _connector(ctx).syncer(resource_type)
    _emit_pages(syncer.list, token, page_size, fetch_all)


@cli.command("entitlements")
@click.argument("resource_type", type=RESOURCE_TYPE_CHOICE)
@click.argument("resource_id")
@click.pass_context
@_salesforce_errors
def cmd_entitlements(ctx: click.Context, resource_type: str, resource_id: str) -> None:
    """Show the entitlements a resource offers."""
    syncer = _connector(ctx).syncer(resource_type)
    page = syncer.entitlements(_stub_resource(resource_type, resource_id), PageToken())
    for entitlement in page.items:
        _echo_json(entitlement.to_dict())


@cli.command("grants")
@click.argument("resource_type", type=RESOURCE_TYPE_CHOICE)
@click.argument("resource_id")
@_page_options
@click.pass_context
@_salesforce_errors
def cmd_grants(
    ctx: click.Context,
    resource_type: str,
    resource_id: str,
    page_size: int,
    token: str,
    fetch_all: bool,
) -> None:
    """List who holds the entitlements of a resource."""
    syncer = _connector(ctx).syncer(resource_type)
    resource = _stub_resource(resource_type, resource_id)
    _emit_pages(lambda t: syncer.grants(resource, t), token, page_size, fetch_all)


def _edge_command(name: str, help_text: str) -> Callable:
    def decorate(func: Callable) -> Callable:
        func = _salesforce_errors(func)
        func = click.pass_context(func)
        func = click.option(
            "--principal-type",
            type=RESOURCE_TYPE_CHOICE,
            default=RESOURCE_TYPE_USER.id,
            show_default=True,
            help="Resource type of the principal.",
        )(func)
        func = click.argument("principal_id")(func)
        func = click.argument("resource_id")(func)
        func = click.argument("resource_type", type=RESOURCE_TYPE_CHOICE)(func)
        return cli.command(name, help=help_text)(func)

    return decorate


def _entitlement_for(syncer, resource: Resource):
    page = syncer.entitlements(resource, PageToken())
    if not page.items:
        raise click.ClickException(f"{resource.resource_type} resources have no entitlements")
    return page.items[0]


@_edge_command("grant", "Grant RESOURCE_TYPE RESOURCE_ID to PRINCIPAL_ID.")
def cmd_grant(
    ctx: click.Context, resource_type: str, resource_id: str, principal_id: str, principal_type: str
) -> None:
    syncer = _connector(ctx).syncer(resource_type)
    entitlement = _entitlement_for(syncer, _stub_resource(resource_type, resource_id))
    result = syncer.grant(_stub_resource(principal_type, principal_id), entitlement)
    click.echo(f"{result.outcome.value}: {entitlement.id} -> {principal_type}:{principal_id}")


@_edge_command("revoke", "Revoke RESOURCE_TYPE RESOURCE_ID from PRINCIPAL_ID.")
def cmd_revoke(
    ctx: click.Context, resource_type: str, resource_id: str, principal_id: str, principal_type: str
) -> None:
    syncer = _connector(ctx).syncer(resource_type)
    resource = _stub_resource(resource_type, resource_id)
    entitlement = _entitlement_for(syncer, resource)
    grant = new_grant(resource, entitlement.slug, ResourceId(principal_type, principal_id))
    result = syncer.revoke(grant)
    click.echo(f"{result.outcome.value}: {entitlement.id} -> {principal_type}:{principal_id}")


@cli.command("create-account")
@click.option("--email", required=True, help="Email; also used as the username.")
@click.option("--profile-id", required=True, help="Salesforce Profile ID.")
@click.option("--alias", required=True, help="User alias.")
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@click.option("--timezone", default="America/New_York", show_default=True, help="IANA time zone.")
@click.pass_context
@_salesforce_errors
def cmd_create_account(
    ctx: click.Context,
    email: str,
    profile_id: str,
    alias: str,
    first_name: str,
    last_name: str,
    timezone: str,
) -> None:
    """Create (or reactivate) a user and send the password reset email."""
    syncer = _connector(ctx).syncer(RESOURCE_TYPE_USER.id)
    if not isinstance(syncer, UserSyncer):
        raise click.ClickException("the configured user syncer cannot create accounts")
    resource = syncer.create_account(
        {
            "email": email,
            "profileId": profile_id,
            "alias": alias,
            "first_name": first_name,
            "last_name": last_name,
            "timezone": timezone,
        }
    )
    _echo_json(resource.to_dict(), pretty=True)


@cli.command("user-status")
@click.argument("user_id")
@click.option("--active/--inactive", required=True, help="Activate or deactivate the user.")
@click.pass_context
@_salesforce_errors
def cmd_user_status(ctx: click.Context, user_id: str, active: bool) -> None:
    """Activate or deactivate a user."""
    response, _ = _connector(ctx).update_user_status({"resource_id": user_id, "is_active": active})
    _echo_json(response)


def full_sync(connector: SalesforceConnector, page_size: int = 0) -> Dict[str, List[Dict[str, Any]]]:
    """Resources, entitlements and grants of every active syncer."""
    out: Dict[str, List[Dict[str, Any]]] = {"resources": [], "entitlements": [], "grants": []}
    for syncer in connector.resource_syncers():
        resources = list(iter_pages(syncer.list, page_size))
        out["resources"].extend(r.to_dict() for r in resources)
        if syncer.resource_type.skip_entitlements_and_grants:
            continue
        for resource in tqdm(resources, desc=f"Sync {syncer.resource_type.display_name}"):
            for entitlement in iter_pages(lambda t: syncer.entitlements(resource, t), page_size):
                out["entitlements"].append(entitlement.to_dict())
            for grant in iter_pages(lambda t: syncer.grants(resource, t), page_size):
                out["grants"].append(grant.to_dict())
    return out


@cli.command("sync")
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Where to write the JSON snapshot.",
)
@click.option("--page-size", type=int, default=0, help="Records per page (0: default).")
@click.pass_context
@_salesforce_errors
def cmd_sync(ctx: click.Context, out_path: Path, page_size: int) -> None:
    """Full sync of every resource type to a JSON file."""
    snapshot = full_sync(_connector(ctx), page_size)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    _logger.info("Wrote sync snapshot to %s", out_path)
    click.echo(
        f"✅ {len(snapshot['resources'])} resources, {len(snapshot['entitlements'])} entitlements, "
        f"{len(snapshot['grants'])} grants -> {out_path}"
    )
