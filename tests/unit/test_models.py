"""Tests for entity, push and state models."""

import json
from uuid import UUID

import pytest
from pydantic import ValidationError

from hapi_indexer.models import (
    Address,
    BlockCursor,
    Case,
    CaseStatus,
    Category,
    EventName,
    LogCursor,
    NoCursor,
    PersistedState,
    PushEvent,
    PushPayload,
    Reporter,
    ReporterRole,
    ReporterStatus,
    TransactionCursor,
)
from hapi_indexer.models.entities import CATEGORIES, enum_at, uuid_from_u128
from hapi_indexer.models.state import is_behind


def make_reporter(**overrides) -> Reporter:
    fields = {
        "id": UUID(int=1),
        "account": "alice.testnet",
        "role": ReporterRole.PUBLISHER,
        "status": ReporterStatus.ACTIVE,
        "name": "Alice",
        "url": "https://alice.example",
        "stake": 10**24,
        "unlock_timestamp": 0,
    }
    fields.update(overrides)
    return Reporter(**fields)


class TestEntities:
    """Tests for entity snapshots."""

    def test_uuid_from_u128(self):
        """Test u128 ids map to UUIDs from ints and decimal strings."""
        assert uuid_from_u128(1) == UUID("00000000-0000-0000-0000-000000000001")
        assert uuid_from_u128("255") == UUID(int=255)

    def test_enum_at(self):
        """Test contract enum lookup by declaration index."""
        assert enum_at(CATEGORIES, 0) == Category.NONE
        assert enum_at(CATEGORIES, 11) == Category.DARKNET_SERVICE

    def test_enum_at_out_of_range(self):
        """Test invalid enum index raises."""
        with pytest.raises(ValueError, match="Invalid Category index: 99"):
            enum_at(CATEGORIES, 99)

    def test_risk_bounds(self):
        """Test risk must stay within 0..10."""
        with pytest.raises(ValidationError):
            Address(
                address="0xabc",
                case_id=UUID(int=1),
                reporter_id=UUID(int=2),
                risk=11,
                category=Category.SCAM,
                confirmations=0,
            )

    def test_stake_serialized_as_string(self):
        """Test large stake values are serialized as decimal strings."""
        dumped = make_reporter().model_dump(mode="json")

        assert dumped["stake"] == "1000000000000000000000000"
        assert dumped["role"] == "Publisher"

    def test_entities_frozen(self):
        """Test snapshots are immutable."""
        reporter = make_reporter()
        with pytest.raises(ValidationError):
            reporter.name = "Mallory"


class TestEventName:
    """Tests for EventName parsing."""

    @pytest.mark.parametrize(
        "method,expected",
        [
            ("create_reporter", EventName.CREATE_REPORTER),
            ("activate_reporter", EventName.ACTIVATE_REPORTER),
            ("unstake", EventName.UNSTAKE),
            ("unstake_reporter", EventName.UNSTAKE),
            ("create_case", EventName.CREATE_CASE),
            ("confirm_asset", EventName.CONFIRM_ASSET),
            ("update_stake_configuration", EventName.UPDATE_STAKE_CONFIGURATION),
            ("create_network", EventName.INITIALIZE),
        ],
    )
    def test_from_method(self, method, expected):
        """Test snake_case method names map to events."""
        assert EventName.from_method(method) == expected

    def test_from_method_unknown(self):
        """Test unknown methods are rejected."""
        with pytest.raises(ValueError):
            EventName.from_method("ft_transfer")


class TestPushPayload:
    """Tests for push payload wire format."""

    def test_wire_format(self):
        """Test payload serializes with the entity kind as wrapper key."""
        payload = PushPayload(
            event=PushEvent(
                name=EventName.CREATE_CASE,
                tx_hash="0xdeadbeef",
                tx_index=3,
                timestamp=1700000000,
            ),
            data=Case(
                id=UUID(int=7),
                name="Hack",
                url="https://case.example",
                status=CaseStatus.OPEN,
                reporter_id=UUID(int=1),
            ),
        )

        wire = json.loads(payload.model_dump_json())

        assert wire["event"] == {
            "name": "CreateCase",
            "tx_hash": "0xdeadbeef",
            "tx_index": 3,
            "timestamp": 1700000000,
        }
        assert wire["data"] == {
            "Case": {
                "id": "00000000-0000-0000-0000-000000000007",
                "name": "Hack",
                "url": "https://case.example",
                "status": "Open",
                "reporter_id": "00000000-0000-0000-0000-000000000001",
            }
        }

    def test_parse_wire_format(self):
        """Test wrapped entity data is accepted on input."""
        reporter = make_reporter()
        payload = PushPayload(
            event=PushEvent(name=EventName.UPDATE_REPORTER, tx_hash="abc", timestamp=1),
            data=reporter,
        )

        parsed = PushPayload.model_validate_json(payload.model_dump_json())

        assert isinstance(parsed.data, Reporter)
        assert parsed.data == reporter

    def test_empty_tx_hash_rejected(self):
        """Test events require a transaction hash."""
        with pytest.raises(ValidationError):
            PushEvent(name=EventName.CREATE_CASE, tx_hash="", timestamp=0)


class TestCursors:
    """Tests for indexing cursors."""

    def test_ordering(self):
        """Test cursor positions order by chain position."""
        assert is_behind(NoCursor(), BlockCursor(height=0))
        assert is_behind(BlockCursor(height=9), BlockCursor(height=10))
        assert is_behind(LogCursor(block=10, log_index=3), BlockCursor(height=10))
        assert not is_behind(BlockCursor(height=10), LogCursor(block=10, log_index=3))
        assert not is_behind(BlockCursor(height=10), BlockCursor(height=10))

    def test_transaction_cursor_same_slot(self):
        """Test cursors within one slot are not considered behind."""
        a = TransactionCursor(slot=5, signature="sigA")
        b = TransactionCursor(slot=5, signature="sigB")

        assert not is_behind(a, b)
        assert not is_behind(b, a)
        assert is_behind(a, TransactionCursor(slot=6, signature="sigC"))

    def test_str(self):
        """Test cursor display form."""
        assert str(NoCursor()) == "none"
        assert str(BlockCursor(height=50)) == "block:50"
        assert str(LogCursor(block=5, log_index=2)) == "log:5:2"
        assert str(TransactionCursor(slot=1, signature="s")) == "transaction:1:s"

    @pytest.mark.parametrize(
        "cursor",
        [
            NoCursor(),
            BlockCursor(height=42),
            LogCursor(block=42, log_index=1),
            TransactionCursor(slot=42, signature="5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnb"),
        ],
    )
    def test_persisted_state_json(self, cursor):
        """Test persisted state keeps the cursor variant."""
        state = PersistedState(network="near", cursor=cursor)

        restored = PersistedState.model_validate_json(state.model_dump_json())

        assert restored.cursor == cursor
        assert type(restored.cursor) is type(cursor)
