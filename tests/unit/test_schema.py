"""Tests for DynamoDB schema key builders."""

from datetime import timedelta

from space_billing import schema
from tests.fixtures.ledger import FROM, PROVIDER, TO


class TestKeyBuilders:
    """Tests for key builder functions."""

    def test_pk_space(self) -> None:
        pk = schema.pk_space(PROVIDER, "did:key:z6Mk1")
        assert pk == "SPACE#did:web:web3.storage#did:key:z6Mk1"

    def test_pk_customer(self) -> None:
        assert schema.pk_customer("did:mailto:a") == "CUSTOMER#did:mailto:a"

    def test_sk_diff(self) -> None:
        assert schema.sk_diff(FROM, "bafy1") == "#DIFF#2024-01-01T00:00:00.000Z#bafy1"

    def test_sk_snapshot(self) -> None:
        assert schema.sk_snapshot(TO) == "#SNAPSHOT#2024-02-01T00:00:00.000Z"

    def test_sk_usage(self) -> None:
        assert (
            schema.sk_usage(FROM, PROVIDER, "did:key:z6Mk1")
            == "#USAGE#2024-01-01T00:00:00.000Z#did:web:web3.storage#did:key:z6Mk1"
        )
        assert schema.sk_usage(FROM, PROVIDER, "x").startswith(schema.sk_usage_prefix(FROM))


class TestDiffRangeBounds:
    """The diff range query selects exactly [from, to)."""

    def _in_range(self, sk: str) -> bool:
        return schema.sk_diff_bound(FROM) <= sk <= schema.sk_diff_bound(TO)

    def test_includes_diff_at_from(self) -> None:
        assert self._in_range(schema.sk_diff(FROM, "bafy"))

    def test_excludes_diff_at_to(self) -> None:
        assert not self._in_range(schema.sk_diff(TO, "bafy"))

    def test_includes_diff_just_before_to(self) -> None:
        assert self._in_range(schema.sk_diff(TO - timedelta(milliseconds=1), "zzzz"))

    def test_excludes_diff_just_before_from(self) -> None:
        assert not self._in_range(schema.sk_diff(FROM - timedelta(milliseconds=1), "bafy"))

    def test_lexicographic_order_is_time_order(self) -> None:
        times = [FROM + timedelta(milliseconds=ms) for ms in (0, 9, 10, 999, 1000, 86_400_000)]
        keys = [schema.sk_diff(t, "bafy") for t in times]
        assert keys == sorted(keys)


class TestTableDefinition:
    """Tests for get_table_definition."""

    def test_keys(self) -> None:
        definition = schema.get_table_definition("billing")

        assert definition["TableName"] == "billing"
        assert definition["BillingMode"] == "PAY_PER_REQUEST"
        assert {k["AttributeName"] for k in definition["KeySchema"]} == {"PK", "SK"}
