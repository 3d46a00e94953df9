"""DynamoDB repository for space billing data."""

import logging
from datetime import datetime
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from . import schema
from .exceptions import StorageFailure
from .models import (
    SpaceDiff,
    SpaceSnapshot,
    UsageRecord,
    format_timestamp,
    parse_timestamp,
    to_epoch_ms,
)
from .naming import validate_table_name

logger = logging.getLogger(__name__)


class Repository:
    """
    Async DynamoDB repository for space billing data.

    Implements SpaceDiffStore, SpaceSnapshotStore and UsageStore on a
    single table. Numbers are sent as DynamoDB ``N`` strings through the
    low-level client, so integers of up to 38 digits round-trip exactly.

    Every DynamoDB error is raised as StorageFailure.

    Example:
        async with Repository(table_name="space-billing", region="us-west-2") as repo:
            snapshot = await repo.get_space_snapshot(provider, space, recorded_at)
    """

    def __init__(
        self,
        table_name: str = schema.DEFAULT_TABLE_NAME,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        validate_table_name(table_name)
        self.table_name = table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def __aenter__(self) -> "Repository":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _get_client(self) -> Any:
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Invoke a DynamoDB operation on this table, wrapping failures."""
        try:
            client = await self._get_client()
            response: dict[str, Any] = await getattr(client, operation)(
                TableName=self.table_name, **kwargs
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageFailure(
                f"DynamoDB {operation} failed: {e}",
                e,
                table_name=self.table_name,
                operation=operation,
            ) from e
        return response

    async def _query_all(self, **kwargs: Any) -> list[dict[str, Any]]:
        """Run a query and follow LastEvaluatedKey until every page is read."""
        items: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            if start_key is not None:
                kwargs["ExclusiveStartKey"] = start_key
            response = await self._call("query", **kwargs)
            items.extend(response.get("Items", []))
            start_key = response.get("LastEvaluatedKey")
            if not start_key:
                return items

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the DynamoDB table if it doesn't exist."""
        client = await self._get_client()
        definition = schema.get_table_definition(self.table_name)

        try:
            await client.create_table(**definition)
            # Wait for table to be active
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise

    async def delete_table(self) -> None:
        """Delete the DynamoDB table."""
        client = await self._get_client()
        try:
            await client.delete_table(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise

    # -------------------------------------------------------------------------
    # Space diff operations
    # -------------------------------------------------------------------------

    async def put_space_diff(self, diff: SpaceDiff) -> None:
        """
        Record a diff.

        The ledger is append-only: if a diff with the same receipt time and
        cause already exists it is left untouched.
        """
        item = {
            "PK": {"S": schema.pk_space(diff.provider, diff.space)},
            "SK": {"S": schema.sk_diff(diff.receipt_at, diff.cause)},
            "type": {"S": schema.TYPE_DIFF},
            "provider": {"S": diff.provider},
            "space": {"S": diff.space},
            "customer": {"S": diff.customer},
            "subscription": {"S": diff.subscription},
            "cause": {"S": diff.cause},
            "change": {"N": str(diff.change)},
            "receiptAt": {"S": format_timestamp(diff.receipt_at)},
            "insertedAt": {"S": format_timestamp(diff.inserted_at)},
        }

        try:
            await self._call(
                "put_item",
                Item=item,
                ConditionExpression="attribute_not_exists(PK)",
            )
        except StorageFailure as e:
            if (
                isinstance(e.cause, ClientError)
                and e.cause.response["Error"]["Code"] == "ConditionalCheckFailedException"
            ):
                logger.debug("Diff already recorded: %s", item["SK"]["S"])
                return
            raise

    async def list_space_diffs(
        self,
        provider: str,
        space: str,
        from_: datetime,
        to: datetime,
    ) -> list[SpaceDiff]:
        """List every diff with ``from_ <= receipt_at < to``, oldest first."""
        items = await self._query_all(
            KeyConditionExpression="PK = :pk AND SK BETWEEN :lo AND :hi",
            ExpressionAttributeValues={
                ":pk": {"S": schema.pk_space(provider, space)},
                ":lo": {"S": schema.sk_diff_bound(from_)},
                ":hi": {"S": schema.sk_diff_bound(to)},
            },
            ConsistentRead=True,
        )
        diffs = [self._deserialize_diff(item) for item in items]
        # BETWEEN is inclusive; bounds compare at millisecond precision like the keys
        lo, hi = to_epoch_ms(from_), to_epoch_ms(to)
        return [d for d in diffs if lo <= to_epoch_ms(d.receipt_at) < hi]

    # -------------------------------------------------------------------------
    # Space snapshot operations
    # -------------------------------------------------------------------------

    async def get_space_snapshot(
        self,
        provider: str,
        space: str,
        recorded_at: datetime,
    ) -> SpaceSnapshot | None:
        """Get the snapshot recorded at exactly ``recorded_at``."""
        response = await self._call(
            "get_item",
            Key={
                "PK": {"S": schema.pk_space(provider, space)},
                "SK": {"S": schema.sk_snapshot(recorded_at)},
            },
            ConsistentRead=True,
        )

        item = response.get("Item")
        if not item:
            return None

        return self._deserialize_snapshot(item)

    async def put_space_snapshot(self, snapshot: SpaceSnapshot) -> None:
        """Upsert a snapshot keyed by (provider, space, recorded_at)."""
        item = {
            "PK": {"S": schema.pk_space(snapshot.provider, snapshot.space)},
            "SK": {"S": schema.sk_snapshot(snapshot.recorded_at)},
            "type": {"S": schema.TYPE_SNAPSHOT},
            "provider": {"S": snapshot.provider},
            "space": {"S": snapshot.space},
            "size": {"N": str(snapshot.size)},
            "recordedAt": {"S": format_timestamp(snapshot.recorded_at)},
            "insertedAt": {"S": format_timestamp(snapshot.inserted_at)},
        }
        await self._call("put_item", Item=item)

    # -------------------------------------------------------------------------
    # Usage operations
    # -------------------------------------------------------------------------

    async def put_usage(self, record: UsageRecord) -> None:
        """Upsert a usage record keyed by (customer, provider, space, from_)."""
        item = {
            "PK": {"S": schema.pk_customer(record.customer)},
            "SK": {"S": schema.sk_usage(record.from_, record.provider, record.space)},
            "type": {"S": schema.TYPE_USAGE},
            "customer": {"S": record.customer},
            "account": {"S": record.account},
            "product": {"S": record.product},
            "provider": {"S": record.provider},
            "space": {"S": record.space},
            "usage": {"N": str(record.usage)},
            "from": {"S": format_timestamp(record.from_)},
            "to": {"S": format_timestamp(record.to)},
            "insertedAt": {"S": format_timestamp(record.inserted_at)},
        }
        await self._call("put_item", Item=item)

    async def list_usage(self, customer: str, from_: datetime) -> list[UsageRecord]:
        """List a customer's usage records for the period starting at ``from_``."""
        items = await self._query_all(
            KeyConditionExpression="PK = :pk AND begins_with(SK, :sk_prefix)",
            ExpressionAttributeValues={
                ":pk": {"S": schema.pk_customer(customer)},
                ":sk_prefix": {"S": schema.sk_usage_prefix(from_)},
            },
        )
        return [self._deserialize_usage(item) for item in items]

    # -------------------------------------------------------------------------
    # Deserialization helpers
    # -------------------------------------------------------------------------

    def _deserialize_diff(self, item: dict[str, Any]) -> SpaceDiff:
        return SpaceDiff(
            provider=item["provider"]["S"],
            space=item["space"]["S"],
            customer=item["customer"]["S"],
            subscription=item["subscription"]["S"],
            cause=item["cause"]["S"],
            change=int(item["change"]["N"]),
            receipt_at=parse_timestamp(item["receiptAt"]["S"]),
            inserted_at=parse_timestamp(item["insertedAt"]["S"]),
        )

    def _deserialize_snapshot(self, item: dict[str, Any]) -> SpaceSnapshot:
        return SpaceSnapshot(
            provider=item["provider"]["S"],
            space=item["space"]["S"],
            size=int(item["size"]["N"]),
            recorded_at=parse_timestamp(item["recordedAt"]["S"]),
            inserted_at=parse_timestamp(item["insertedAt"]["S"]),
        )

    def _deserialize_usage(self, item: dict[str, Any]) -> UsageRecord:
        return UsageRecord(
            customer=item["customer"]["S"],
            account=item["account"]["S"],
            product=item["product"]["S"],
            provider=item["provider"]["S"],
            space=item["space"]["S"],
            usage=int(item["usage"]["N"]),
            from_=parse_timestamp(item["from"]["S"]),
            to=parse_timestamp(item["to"]["S"]),
            inserted_at=parse_timestamp(item["insertedAt"]["S"]),
        )
