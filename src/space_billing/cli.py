"""Command-line interface for space-billing."""

import asyncio
import json
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import click

from .billing import handle_space_billing_instruction
from .exceptions import SpaceBillingError
from .models import (
    BillingInstruction,
    SpaceDiff,
    SpaceSnapshot,
    UsageSummary,
    format_timestamp,
    utc_now,
)
from .naming import TABLE_ENV_VAR, resolve_table_name
from .periods import last_month_period
from .repository import Repository
from .repository_protocol import BillingStores


class TimestampType(click.ParamType):
    """ISO-8601 timestamp; values without an offset are taken as UTC."""

    name = "timestamp"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> Any:
        if isinstance(value, datetime):
            return value
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            self.fail(f"{value!r} is not an ISO-8601 timestamp", param, ctx)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)


TIMESTAMP = TimestampType()


def table_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Common DynamoDB connection options."""
    func = click.option(
        "--endpoint-url",
        envvar="AWS_ENDPOINT_URL",
        help=(
            "AWS endpoint URL "
            "(e.g., http://localhost:4566 for LocalStack, or other AWS-compatible services)"
        ),
    )(func)
    func = click.option(
        "--region",
        help="AWS region (default: use boto3 defaults)",
    )(func)
    func = click.option(
        "--table-name",
        envvar=TABLE_ENV_VAR,
        help="DynamoDB table name (default: space-billing)",
    )(func)
    return func


def _repository(table_name: str | None, region: str | None, endpoint_url: str | None) -> Repository:
    try:
        return Repository(
            table_name=resolve_table_name(table_name),
            region=region,
            endpoint_url=endpoint_url,
        )
    except SpaceBillingError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.version_option(package_name="space-billing")
def cli() -> None:
    """space-billing storage usage metering CLI."""
    pass


# ---------------------------------------------------------------------------
# Table management
# ---------------------------------------------------------------------------


@cli.command("create-table")
@table_options
def create_table(table_name: str | None, region: str | None, endpoint_url: str | None) -> None:
    """Create the DynamoDB table (local development)."""
    repo = _repository(table_name, region, endpoint_url)

    async def _create() -> None:
        async with repo:
            try:
                await repo.create_table()
            except Exception as e:
                click.echo(f"✗ Table creation failed: {e}", err=True)
                sys.exit(1)
        click.echo(f"✓ Table '{repo.table_name}' ready")

    asyncio.run(_create())


@cli.command("delete-table")
@table_options
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
def delete_table(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    yes: bool,
) -> None:
    """Delete the DynamoDB table and every record in it."""
    repo = _repository(table_name, region, endpoint_url)

    if not yes:
        click.confirm(
            f"Are you sure you want to delete table '{repo.table_name}'?",
            abort=True,
        )

    async def _delete() -> None:
        async with repo:
            try:
                await repo.delete_table()
            except Exception as e:
                click.echo(f"✗ Deletion failed: {e}", err=True)
                sys.exit(1)
        click.echo(f"✓ Table '{repo.table_name}' deleted")

    asyncio.run(_delete())


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@cli.group()
def snapshot() -> None:
    """Read and seed space snapshots."""
    pass


@snapshot.command("get")
@table_options
@click.option("--provider", required=True, help="Storage provider DID")
@click.option("--space", required=True, help="Space DID")
@click.option("--at", "recorded_at", type=TIMESTAMP, required=True, help="Snapshot time")
def snapshot_get(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    provider: str,
    space: str,
    recorded_at: datetime,
) -> None:
    """Show the snapshot of a space at a point in time."""
    repo = _repository(table_name, region, endpoint_url)

    async def _get() -> None:
        async with repo:
            try:
                found = await repo.get_space_snapshot(provider, space, recorded_at)
            except SpaceBillingError as e:
                click.echo(f"✗ {e}", err=True)
                sys.exit(1)
        if found is None:
            click.echo(f"✗ No snapshot at {format_timestamp(recorded_at)}", err=True)
            sys.exit(1)
        _echo_json(found.to_dict())

    asyncio.run(_get())


@snapshot.command("put")
@table_options
@click.option("--provider", required=True, help="Storage provider DID")
@click.option("--space", required=True, help="Space DID")
@click.option("--at", "recorded_at", type=TIMESTAMP, required=True, help="Snapshot time")
@click.option("--size", type=click.IntRange(min=0), default=0, help="Size in bytes (default: 0)")
def snapshot_put(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    provider: str,
    space: str,
    recorded_at: datetime,
    size: int,
) -> None:
    """Seed the snapshot of a space (e.g. size 0 when it is provisioned)."""
    repo = _repository(table_name, region, endpoint_url)
    record = SpaceSnapshot(
        provider=provider,
        space=space,
        size=size,
        recorded_at=recorded_at,
        inserted_at=utc_now(),
    )

    async def _put() -> None:
        async with repo:
            try:
                await repo.put_space_snapshot(record)
            except SpaceBillingError as e:
                click.echo(f"✗ {e}", err=True)
                sys.exit(1)
        click.echo(f"✓ Snapshot recorded: {size} bytes at {format_timestamp(recorded_at)}")

    asyncio.run(_put())


# ---------------------------------------------------------------------------
# Diffs
# ---------------------------------------------------------------------------


@cli.group()
def diff() -> None:
    """Record space size changes."""
    pass


@diff.command("put")
@table_options
@click.option("--provider", required=True, help="Storage provider DID")
@click.option("--space", required=True, help="Space DID")
@click.option("--customer", required=True, help="Customer DID")
@click.option("--subscription", required=True, help="Subscription identifier")
@click.option("--cause", required=True, help="Identifier of the event causing the change")
@click.option("--change", type=int, required=True, help="Signed size change in bytes")
@click.option("--at", "receipt_at", type=TIMESTAMP, required=True, help="Effective time")
def diff_put(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    provider: str,
    space: str,
    customer: str,
    subscription: str,
    cause: str,
    change: int,
    receipt_at: datetime,
) -> None:
    """Record a size change for a space."""
    repo = _repository(table_name, region, endpoint_url)
    record = SpaceDiff(
        provider=provider,
        space=space,
        customer=customer,
        subscription=subscription,
        cause=cause,
        change=change,
        receipt_at=receipt_at,
        inserted_at=utc_now(),
    )

    async def _put() -> None:
        async with repo:
            try:
                await repo.put_space_diff(record)
            except SpaceBillingError as e:
                click.echo(f"✗ {e}", err=True)
                sys.exit(1)
        click.echo(f"✓ Diff recorded: {change:+d} bytes at {format_timestamp(receipt_at)}")

    asyncio.run(_put())


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


@cli.command()
@table_options
@click.option("--customer", required=True, help="Customer DID")
@click.option("--account", required=True, help="Billing account (e.g. stripe:cus_123)")
@click.option("--product", required=True, help="Product DID")
@click.option("--provider", required=True, help="Storage provider DID")
@click.option("--space", required=True, help="Space DID")
@click.option(
    "--from",
    "from_",
    type=TIMESTAMP,
    help="Period start (default: start of last month)",
)
@click.option(
    "--to",
    type=TIMESTAMP,
    help="Period end, exclusive (default: start of this month)",
)
def bill(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    customer: str,
    account: str,
    product: str,
    provider: str,
    space: str,
    from_: datetime | None,
    to: datetime | None,
) -> None:
    """Compute usage of a space for a billing period."""
    default_from, default_to = last_month_period()
    instruction = BillingInstruction(
        customer=customer,
        account=account,
        product=product,
        provider=provider,
        space=space,
        from_=from_ or default_from,
        to=to or default_to,
    )
    repo = _repository(table_name, region, endpoint_url)

    async def _bill() -> None:
        async with repo:
            result = await handle_space_billing_instruction(
                instruction, BillingStores.from_repository(repo)
            )

        if result.error is not None:
            click.echo(f"✗ Billing failed [{result.error.code}]: {result.error}", err=True)
            if result.error.remediation:
                click.echo(f"  Remediation: {result.error.remediation}", err=True)
            sys.exit(2 if result.error.retryable else 1)

        outcome = result.ok
        if outcome is not None:
            period = f"{format_timestamp(instruction.from_)} .. {format_timestamp(instruction.to)}"
            click.echo(f"✓ Space billed: {space}")
            click.echo(f"  Period: {period}")
            click.echo(f"  Usage: {outcome.usage} byte-ms")
            click.echo(f"  Snapshot size: {outcome.snapshot_size} bytes")
            click.echo(f"  Diffs: {outcome.diff_count}")

    asyncio.run(_bill())


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


@cli.group()
def usage() -> None:
    """Query computed usage records."""
    pass


@usage.command("list")
@table_options
@click.option("--customer", required=True, help="Customer DID")
@click.option(
    "--from",
    "from_",
    type=TIMESTAMP,
    help="Period start (default: start of last month)",
)
@click.option("--json", "as_json", is_flag=True, help="Output records as JSON")
def usage_list(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    customer: str,
    from_: datetime | None,
    as_json: bool,
) -> None:
    """List a customer's usage records for a billing period."""
    period_start = from_ or last_month_period()[0]
    repo = _repository(table_name, region, endpoint_url)

    async def _list() -> None:
        async with repo:
            try:
                records = await repo.list_usage(customer, period_start)
            except SpaceBillingError as e:
                click.echo(f"✗ {e}", err=True)
                sys.exit(1)

        summary = UsageSummary(customer=customer, from_=period_start, records=records)
        if as_json:
            _echo_json(
                {
                    "customer": customer,
                    "from": format_timestamp(period_start),
                    "totalUsage": summary.total_usage,
                    "records": [r.to_dict() for r in summary.records],
                }
            )
            return

        click.echo(f"Usage for {customer} from {format_timestamp(period_start)}")
        click.echo()
        if not summary.records:
            click.echo("No usage records found.")
            return
        for record in summary.records:
            click.echo(f"  {record.space} ({record.provider}): {record.usage} byte-ms")
        click.echo()
        click.echo(f"Total: {summary.total_usage} byte-ms across {summary.space_count} space(s)")

    asyncio.run(_list())


def main() -> None:
    """Entry point for the space-billing CLI."""
    cli()


if __name__ == "__main__":
    main()
