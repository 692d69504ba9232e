"""tenantdomains CLI - admin interface for tenant custom domains."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tenantdomains import __version__

if TYPE_CHECKING:
    from tenantdomains.core.config import DomainsConfig
    from tenantdomains.domains import DomainManager, DomainRecord

console = Console()

T = TypeVar("T")

SSL_STATUS_COLORS = {
    "PENDING": "yellow",
    "PROVISIONING": "cyan",
    "ACTIVE": "green",
    "FAILED": "red",
    "EXPIRED": "red",
}


def _load_config(ctx: click.Context) -> DomainsConfig:
    from tenantdomains.core.config import DomainsConfig, get_config

    opts = ctx.obj
    overrides = {"storage_path": opts.get("storage"), "log_level": opts.get("log_level")}
    if opts.get("config_file"):
        return DomainsConfig.from_file(opts["config_file"], **overrides)
    explicit = {k: v for k, v in overrides.items() if v is not None}
    if not explicit:
        return get_config()
    return DomainsConfig(**explicit)


def _run(ctx: click.Context, action: Callable[[DomainManager], Awaitable[T]]) -> T:
    """Build a manager, run ``action`` against it and close it.

    Closing waits for any provisioning the action started in the background.
    """
    from tenantdomains.core.logging import configure_logging
    from tenantdomains.domains import DomainError, DomainManager

    try:
        config = _load_config(ctx)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    configure_logging(config.log_level)

    async def _main() -> T:
        manager = DomainManager.from_config(config)
        try:
            return await action(manager)
        finally:
            await manager.close()

    try:
        return asyncio.run(_main())
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _record_panel(record: DomainRecord, title: str, border_style: str = "cyan") -> Panel:
    verified = "[green]Yes[/green]" if record.verified else "[yellow]No[/yellow]"
    content = (
        f"[bold]ID:[/bold] {record.id}\n"
        f"[bold]Domain:[/bold] {record.hostname}\n"
        f"[bold]Tenant:[/bold] {record.tenant_id}\n"
        f"[bold]Primary:[/bold] {'Yes' if record.is_primary else 'No'}\n"
        f"[bold]Verified:[/bold] {verified}\n"
        f"[bold]SSL:[/bold] {record.ssl_status.value}"
    )
    if record.verified_at:
        content += f"\n[bold]Verified At:[/bold] {record.verified_at.strftime('%Y-%m-%d %H:%M')}"
    if record.ssl_expires_at:
        content += f"\n[bold]SSL Expires:[/bold] {record.ssl_expires_at.strftime('%Y-%m-%d %H:%M')}"
    return Panel(content, title=title, border_style=border_style)


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--storage", default=None, help="Path to domain storage file")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level",
)
@click.pass_context
def main(ctx: click.Context, config_file: str | None, storage: str | None, log_level: str | None):
    """tenantdomains - custom domains and TLS certificates for tenants.

    Examples:

        tenantdomains domain add tenant-1 app.acme.com --primary

        tenantdomains domain verify <domain-id>

        tenantdomains ssl status <domain-id>
    """
    ctx.ensure_object(dict)
    ctx.obj.update(config_file=config_file, storage=storage, log_level=log_level)


@main.command()
def version():
    """Show version information."""
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version.split()[0]}")


@main.command("config")
@click.pass_context
def show_config(ctx: click.Context):
    """Show the effective configuration."""
    try:
        config = _load_config(ctx)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    _print_json(config.to_display_dict())


@main.group()
def domain():
    """Manage tenant custom domains.

    Examples:

        tenantdomains domain add tenant-1 app.acme.com

        tenantdomains domain instructions <domain-id>

        tenantdomains domain verify <domain-id>

        tenantdomains domain list tenant-1
    """


@domain.command("list")
@click.argument("tenant_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_list(ctx: click.Context, tenant_id: str, json_output: bool):
    """List a tenant's domains, primary first."""

    async def action(manager: DomainManager) -> list[DomainRecord]:
        return await manager.list_domains(tenant_id)

    domains = _run(ctx, action)

    if json_output:
        _print_json([d.to_dict() for d in domains])
        return

    if not domains:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title=f"Domains for {tenant_id}")
    table.add_column("ID", style="dim")
    table.add_column("Domain", style="cyan")
    table.add_column("Primary", justify="center")
    table.add_column("Verified", justify="center")
    table.add_column("SSL")
    table.add_column("Created At")

    for record in domains:
        color = SSL_STATUS_COLORS.get(record.ssl_status.value, "white")
        table.add_row(
            record.id,
            record.hostname,
            "[green]Yes[/green]" if record.is_primary else "",
            "[green]Yes[/green]" if record.verified else "[yellow]No[/yellow]",
            f"[{color}]{record.ssl_status.value}[/{color}]",
            record.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@domain.command("add")
@click.argument("tenant_id")
@click.argument("hostname")
@click.option("--primary", is_flag=True, help="Make this the tenant's primary domain")
@click.pass_context
def domain_add(ctx: click.Context, tenant_id: str, hostname: str, primary: bool):
    """Register a custom domain for a tenant.

    After registration, you'll receive DNS records to configure.
    """

    async def action(manager: DomainManager) -> tuple[DomainRecord, str]:
        record = await manager.add_domain(tenant_id, hostname, primary)
        return record, manager.instructions(record).to_text()

    record, instructions = _run(ctx, action)
    console.print(
        Panel(
            f"[green]Domain registered successfully![/green]\n\n"
            f"[bold]ID:[/bold] {record.id}\n"
            f"[bold]Domain:[/bold] {record.hostname}\n"
            f"[bold]Status:[/bold] Pending verification\n\n"
            f"[yellow]Configure these DNS records:[/yellow]\n\n"
            f"{instructions}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]tenantdomains domain verify {record.id}[/cyan]",
            title="Domain Registration",
            border_style="green",
        )
    )


@domain.command("get")
@click.argument("domain_id")
@click.option("--tenant-id", "-t", default=None, help="Only show the domain if owned by this tenant")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_get(ctx: click.Context, domain_id: str, tenant_id: str | None, json_output: bool):
    """Show a single domain."""

    async def action(manager: DomainManager) -> DomainRecord | None:
        return await manager.get_domain(domain_id, tenant_id)

    record = _run(ctx, action)
    if record is None:
        console.print(f"[red]Domain not found:[/red] {domain_id}")
        sys.exit(1)

    if json_output:
        _print_json(record.to_dict())
        return
    console.print(_record_panel(record, f"Domain: {record.hostname}"))


@domain.command("remove")
@click.argument("domain_id")
@click.option("--tenant-id", "-t", required=True, help="Tenant that owns the domain")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def domain_remove(ctx: click.Context, domain_id: str, tenant_id: str, yes: bool):
    """Remove a tenant's domain."""
    if not yes and not click.confirm(f"Are you sure you want to remove '{domain_id}'?"):
        console.print("[dim]Cancelled[/dim]")
        return

    async def action(manager: DomainManager) -> DomainRecord:
        return await manager.remove_domain(domain_id, tenant_id)

    record = _run(ctx, action)
    console.print(f"[green]Domain removed:[/green] {record.hostname}")


@domain.command("set-primary")
@click.argument("domain_id")
@click.option("--tenant-id", "-t", required=True, help="Tenant that owns the domain")
@click.pass_context
def domain_set_primary(ctx: click.Context, domain_id: str, tenant_id: str):
    """Make a verified domain the tenant's primary domain."""

    async def action(manager: DomainManager) -> DomainRecord:
        return await manager.set_primary(domain_id, tenant_id)

    record = _run(ctx, action)
    console.print(f"[green]Primary domain set:[/green] {record.hostname}")


@domain.command("instructions")
@click.argument("domain_id")
@click.option("--tenant-id", "-t", required=True, help="Tenant that owns the domain")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_instructions(ctx: click.Context, domain_id: str, tenant_id: str, json_output: bool):
    """Show the DNS records a domain needs."""

    async def action(manager: DomainManager) -> Any:
        record = await manager.get_domain(domain_id, tenant_id)
        return manager.instructions(record) if record else None

    instructions = _run(ctx, action)
    if instructions is None:
        console.print(f"[red]Domain not found:[/red] {domain_id}")
        sys.exit(1)

    if json_output:
        _print_json(instructions.to_dict())
        return
    console.print(
        Panel(instructions.to_text(), title=f"DNS Setup: {instructions.hostname}", border_style="yellow")
    )


@domain.command("verify")
@click.argument("domain_id")
@click.pass_context
def domain_verify(ctx: click.Context, domain_id: str):
    """Verify domain ownership via its DNS TXT record.

    On success, certificate provisioning starts automatically.
    """
    console.print(f"Verifying DNS records for [cyan]{domain_id}[/cyan]...", style="yellow")

    async def action(manager: DomainManager) -> Any:
        return await manager.verify(domain_id)

    result = _run(ctx, action)
    if result.success:
        console.print(
            Panel(
                f"[green]{result.message}[/green]\n\n"
                f"Check certificate progress with:\n"
                f"  [cyan]tenantdomains ssl status {domain_id}[/cyan]",
                title="Verification Successful",
                border_style="green",
            )
        )
    else:
        console.print(
            Panel(
                f"[yellow]Verification incomplete[/yellow]\n\n{result.message}",
                title="Verification Status",
                border_style="yellow",
            )
        )
        sys.exit(1)


@domain.command("check-cname")
@click.argument("domain_id")
@click.pass_context
def domain_check_cname(ctx: click.Context, domain_id: str):
    """Check that the domain's CNAME points at the platform."""

    async def action(manager: DomainManager) -> Any:
        return await manager.check_cname(domain_id)

    result = _run(ctx, action)
    if result.success:
        console.print(f"[green]OK[/green] {result.message}")
    else:
        console.print(f"[yellow]![/yellow] {result.message}")
        sys.exit(1)


@domain.command("resolve")
@click.argument("hostname")
@click.pass_context
def domain_resolve(ctx: click.Context, hostname: str):
    """Show which tenant a verified hostname routes to."""

    async def action(manager: DomainManager) -> str | None:
        return await manager.resolve_tenant(hostname)

    tenant_id = _run(ctx, action)
    if tenant_id is None:
        console.print(f"[dim]No verified domain for[/dim] {hostname}")
        sys.exit(1)
    click.echo(tenant_id)


@main.group()
def ssl():
    """Inspect, provision and renew TLS certificates."""


@ssl.command("status")
@click.argument("domain_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def ssl_status(ctx: click.Context, domain_id: str, json_output: bool):
    """Show certificate status for a domain."""

    async def action(manager: DomainManager) -> Any:
        return await manager.ssl_status(domain_id)

    status = _run(ctx, action)
    if json_output:
        _print_json(status.to_dict())
        return

    color = SSL_STATUS_COLORS.get(status.status.value, "white")
    content = f"[bold]Status:[/bold] [{color}]{status.status.value}[/{color}]\n{status.message}"
    if status.expires_at:
        content += f"\n[bold]Expires:[/bold] {status.expires_at.strftime('%Y-%m-%d %H:%M')}"
    console.print(Panel(content, title=f"SSL Status: {domain_id}", border_style=color))


def _print_operation(title: str, result: Any) -> None:
    if result.success:
        console.print(Panel(f"[green]{result.message}[/green]", title=title, border_style="green"))
    else:
        console.print(Panel(f"[red]{result.message}[/red]", title=title, border_style="red"))
        sys.exit(1)


@ssl.command("provision")
@click.argument("domain_id")
@click.pass_context
def ssl_provision(ctx: click.Context, domain_id: str):
    """Provision a certificate for a verified domain."""

    async def action(manager: DomainManager) -> Any:
        return await manager.provision(domain_id)

    _print_operation("SSL Provisioning", _run(ctx, action))


@ssl.command("renew")
@click.argument("domain_id")
@click.pass_context
def ssl_renew(ctx: click.Context, domain_id: str):
    """Renew a domain's certificate."""

    async def action(manager: DomainManager) -> Any:
        return await manager.renew(domain_id)

    _print_operation("SSL Renewal", _run(ctx, action))


@ssl.command("renew-due")
@click.pass_context
def ssl_renew_due(ctx: click.Context):
    """Renew every certificate that is expired or close to expiry."""

    async def action(manager: DomainManager) -> Any:
        return await manager.certificates.renew_due()

    results = _run(ctx, action)
    if not results:
        console.print("[dim]No certificates due for renewal[/dim]")
        return

    table = Table(title="Certificate Renewal")
    table.add_column("Domain ID", style="dim")
    table.add_column("Result")
    for domain_id, result in results.items():
        style = "green" if result.success else "red"
        table.add_row(domain_id, f"[{style}]{result.message}[/{style}]")
    console.print(table)

    if not all(result.success for result in results.values()):
        sys.exit(1)


@ssl.command("watch")
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between renewal sweeps (default: renewal_interval setting)",
)
@click.option("--metrics-port", type=int, default=None, help="Serve Prometheus metrics on this port")
@click.option("--metrics-host", default="127.0.0.1", show_default=True, help="Metrics bind address")
@click.pass_context
def ssl_watch(ctx: click.Context, interval: float | None, metrics_port: int | None, metrics_host: str):
    """Run renewal sweeps until interrupted.

    Press Ctrl+C to stop; in-flight renewals finish before exit.
    """
    from tenantdomains.observability import start_metrics_server

    async def action(manager: DomainManager) -> None:
        runner = None
        if metrics_port is not None:
            runner = await start_metrics_server(metrics_host, metrics_port)
            console.print(f"Metrics: [cyan]http://{metrics_host}:{metrics_port}/metrics[/cyan]")

        every = interval or manager.config.renewal_interval
        console.print(f"Renewing certificates every {every:g}s", style="yellow")
        try:
            await manager.start_renewal(every)
        finally:
            if runner is not None:
                await runner.cleanup()

    try:
        _run(ctx, action)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


if __name__ == "__main__":
    main()
