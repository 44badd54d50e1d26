"""Tests for the registry store module."""

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from rollcall.models import EndpointRecord
from rollcall.store import (
    RegistryStore,
    StoreWriteError,
    format_timestamp,
    parse_timestamp,
    record_from_dict,
    record_to_dict,
)


@pytest.fixture
def alice() -> EndpointRecord:
    return EndpointRecord(
        name="Alice",
        address="10.0.0.5",
        port=22,
        login_user="alice",
        last_seen_at=datetime(2026, 1, 17, 10, 30, 0, tzinfo=UTC),
        is_online=True,
    )


@pytest.fixture
def bob() -> EndpointRecord:
    return EndpointRecord(name="Bob", address="10.0.0.6", port=2222, login_user="bob")


class TestTimestamps:
    """Tests for timestamp formatting and parsing."""

    def test_formats_with_z_suffix(self) -> None:
        """UTC timestamps use millisecond precision and a Z suffix."""
        dt = datetime(2026, 1, 17, 10, 30, 0, tzinfo=UTC)
        assert format_timestamp(dt) == "2026-01-17T10:30:00.000Z"

    def test_none_is_preserved(self) -> None:
        assert format_timestamp(None) is None
        assert parse_timestamp(None) is None

    def test_parses_javascript_iso_strings(self) -> None:
        """Timestamps written by Date.toISOString() are accepted."""
        dt = parse_timestamp("2026-01-17T10:30:00.123Z")
        assert dt == datetime(2026, 1, 17, 10, 30, 0, 123000, tzinfo=UTC)

    def test_rejects_non_string(self) -> None:
        with pytest.raises(ValueError):
            parse_timestamp(12345)


class TestRecordSerialization:
    """Tests for record_to_dict and record_from_dict."""

    def test_uses_reference_json_shape(self, alice: EndpointRecord) -> None:
        """Persisted keys are name, ip, port, username, lastSeen and online."""
        assert record_to_dict(alice) == {
            "name": "Alice",
            "ip": "10.0.0.5",
            "port": 22,
            "username": "alice",
            "lastSeen": "2026-01-17T10:30:00.000Z",
            "online": True,
        }

    def test_string_port_is_converted(self) -> None:
        """Ports stored as strings by older registries are read as integers."""
        record = record_from_dict({"name": "A", "ip": "h", "port": "2200", "username": "u"})
        assert record.port == 2200

    def test_missing_port_defaults_to_ssh(self) -> None:
        record = record_from_dict({"name": "A", "ip": "h", "username": "u"})
        assert record.port == 22

    def test_missing_ip_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            record_from_dict({"name": "A", "username": "u"})

    def test_out_of_range_port_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            record_from_dict({"ip": "h", "port": 70000})

    @pytest.mark.parametrize("port", [22.9, True, "ssh", "22.5", [22]])
    def test_non_integer_port_is_rejected(self, port) -> None:
        with pytest.raises(ValueError, match="port"):
            record_from_dict({"ip": "h", "port": port, "username": "u"})

    @pytest.mark.parametrize("online", ["false", "true", 1, None])
    def test_non_boolean_online_is_rejected(self, online) -> None:
        with pytest.raises(ValueError, match="online"):
            record_from_dict({"ip": "h", "username": "u", "online": online})

    def test_missing_online_is_offline(self) -> None:
        assert record_from_dict({"ip": "h", "username": "u"}).is_online is False


class TestLoad:
    """Tests for RegistryStore.load."""

    def test_missing_file_is_empty(self, store: RegistryStore) -> None:
        assert store.load() == []

    def test_corrupt_file_is_empty(
        self, store: RegistryStore, store_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Unparseable JSON yields an empty list and logs an error."""
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.ERROR, logger="rollcall.store"):
            assert store.load() == []

        assert "Failed to read registry" in caplog.text

    def test_non_array_root_is_empty(self, store: RegistryStore, store_path: Path) -> None:
        store_path.parent.mkdir(parents=True)
        store_path.write_text('{"ip": "10.0.0.5"}', encoding="utf-8")

        assert store.load() == []

    def test_malformed_entries_are_skipped(self, store: RegistryStore, store_path: Path) -> None:
        """Bad entries are dropped while valid ones are kept."""
        store_path.parent.mkdir(parents=True)
        store_path.write_text(
            json.dumps([
                {"name": "Good", "ip": "10.0.0.1", "port": 22, "username": "g"},
                "garbage",
                {"name": "NoIp", "username": "x"},
                {"name": "BadSeen", "ip": "10.0.0.2", "username": "b", "lastSeen": "yesterday"},
            ]),
            encoding="utf-8",
        )

        records = store.load()

        assert [r.address for r in records] == ["10.0.0.1"]

    def test_duplicate_addresses_keep_first(self, store: RegistryStore, store_path: Path) -> None:
        store_path.parent.mkdir(parents=True)
        store_path.write_text(
            json.dumps([
                {"name": "First", "ip": "10.0.0.1", "username": "a"},
                {"name": "Second", "ip": "10.0.0.1", "username": "b"},
            ]),
            encoding="utf-8",
        )

        records = store.load()

        assert len(records) == 1
        assert records[0].name == "First"


class TestReplace:
    """Tests for RegistryStore.replace."""

    def test_round_trips_records(self, store: RegistryStore, alice: EndpointRecord, bob: EndpointRecord) -> None:
        store.replace([alice, bob])

        assert store.load() == [alice, bob]

    def test_creates_parent_directories(self, store: RegistryStore, store_path: Path, alice: EndpointRecord) -> None:
        store.replace([alice])

        assert store_path.exists()

    def test_file_is_human_readable_json(self, store: RegistryStore, store_path: Path, alice: EndpointRecord) -> None:
        store.replace([alice])

        text = store_path.read_text(encoding="utf-8")
        assert "\n" in text
        assert json.loads(text)[0]["ip"] == "10.0.0.5"

    def test_leaves_no_temp_files(self, store: RegistryStore, store_path: Path, alice: EndpointRecord) -> None:
        store.replace([alice])
        store.replace([])

        assert [p.name for p in store_path.parent.iterdir()] == ["endpoints.json"]

    def test_unwritable_location_raises(self, tmp_path: Path, alice: EndpointRecord) -> None:
        """A path whose parent is a regular file cannot be written."""
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = RegistryStore(blocker / "endpoints.json")

        with pytest.raises(StoreWriteError):
            store.replace([alice])

    def test_failed_rename_keeps_previous_contents(
        self, store: RegistryStore, store_path: Path, alice: EndpointRecord, bob: EndpointRecord
    ) -> None:
        """An interrupted write never leaves a torn file behind."""
        store.replace([alice])

        with patch("rollcall.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreWriteError):
                store.replace([alice, bob])

        assert store.load() == [alice]
        assert [p.name for p in store_path.parent.iterdir()] == ["endpoints.json"]


class TestUpsert:
    """Tests for RegistryStore.upsert and clear_all."""

    def test_new_address_is_appended(self, store: RegistryStore, alice: EndpointRecord, bob: EndpointRecord) -> None:
        assert store.upsert(alice) is True
        assert store.upsert(bob) is True

        assert [r.address for r in store.load()] == ["10.0.0.5", "10.0.0.6"]

    def test_known_address_is_replaced_in_place(
        self, store: RegistryStore, alice: EndpointRecord, bob: EndpointRecord
    ) -> None:
        store.upsert(alice)
        store.upsert(bob)
        updated = EndpointRecord(name="Alice 2", address="10.0.0.5", port=22, login_user="alice2")

        assert store.upsert(updated) is False

        records = store.load()
        assert len(records) == 2
        assert records[0] == updated
        assert records[1] == bob

    def test_clear_all_empties_store(self, store: RegistryStore, alice: EndpointRecord) -> None:
        store.upsert(alice)
        store.clear_all()

        assert store.load() == []

    def test_concurrent_upserts_are_not_lost(self, store: RegistryStore) -> None:
        """Upserts from many threads all survive."""
        records = [
            EndpointRecord(name=f"host{i}", address=f"10.0.1.{i}", login_user="u")
            for i in range(20)
        ]
        threads = [threading.Thread(target=store.upsert, args=(r,)) for r in records]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert {r.address for r in store.load()} == {r.address for r in records}


class TestUpdate:
    """Tests for RegistryStore.update."""

    def test_mutation_sees_fresh_state(self, store: RegistryStore, alice: EndpointRecord, bob: EndpointRecord) -> None:
        store.replace([alice])

        result = store.update(lambda records: records + [bob])

        assert result == [alice, bob]
        assert store.load() == [alice, bob]

    def test_read_failure_does_not_overwrite(
        self, store: RegistryStore, store_path: Path, alice: EndpointRecord, bob: EndpointRecord
    ) -> None:
        """An I/O error while re-reading aborts the write instead of persisting an empty set."""
        store.replace([alice, bob])
        before = store_path.read_text(encoding="utf-8")
        newcomer = EndpointRecord(name="Carol", address="10.0.0.7", login_user="carol")

        with patch("rollcall.store.open", side_effect=OSError(24, "Too many open files"), create=True):
            with pytest.raises(StoreWriteError, match="Too many open files"):
                store.upsert(newcomer)

        assert store_path.read_text(encoding="utf-8") == before
        assert store.load() == [alice, bob]

    def test_corrupt_file_is_replaced(self, store: RegistryStore, store_path: Path, alice: EndpointRecord) -> None:
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json", encoding="utf-8")

        store.upsert(alice)

        assert store.load() == [alice]
