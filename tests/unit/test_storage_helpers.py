"""Unit tests for row mapping helpers, the field cipher and store selection."""

from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

from vote_integrity.config import Settings
from vote_integrity.shared.errors import DatabaseError
from vote_integrity.shared.models import BallotType
from vote_integrity.storage import FieldCipher, PostgresStore, SQLiteStore, create_store
from vote_integrity.storage.base import dump_quorum, load_quorum, normalize_email, to_datetime


class TestFieldCipher:

    def test_round_trip_with_key(self):
        cipher = FieldCipher(Fernet.generate_key().decode())

        token = cipher.encrypt("S1234567")

        assert cipher.enabled
        assert token != "S1234567"
        assert cipher.decrypt(token) == "S1234567"

    def test_passthrough_without_key(self):
        cipher = FieldCipher(None)

        assert not cipher.enabled
        assert cipher.encrypt("S1234567") == "S1234567"
        assert cipher.decrypt("S1234567") == "S1234567"

    def test_wrong_key_is_database_error(self):
        token = FieldCipher(Fernet.generate_key().decode()).encrypt("S1234567")

        with pytest.raises(DatabaseError):
            FieldCipher(Fernet.generate_key().decode()).decrypt(token)


class TestRowHelpers:

    def test_naive_timestamps_become_utc(self):
        parsed = to_datetime("2025-03-04T10:30:00")

        assert parsed == datetime(2025, 3, 4, 10, 30, tzinfo=timezone.utc)
        assert to_datetime(None) is None

    def test_quorum_round_trip(self):
        quorum = {BallotType.EXECUTIVE: 0.1, BallotType.REFERENDUM: 0.25}

        assert load_quorum(dump_quorum(quorum)) == quorum
        assert load_quorum(None) == {}
        assert load_quorum({"DIRECTOR": "0.5"}) == {BallotType.DIRECTOR: 0.5}

    def test_normalize_email(self):
        assert normalize_email("  Dana@Uni.EDU ") == "dana@uni.edu"
        assert normalize_email("bob@uni.edu") == "bob@uni.edu"


class TestCreateStore:

    def test_sqlite_backend(self, tmp_path):
        app_settings = Settings(DATABASE_BACKEND="sqlite", SQLITE_PATH=str(tmp_path / "x.db"))

        store = create_store(app_settings)

        assert isinstance(store, SQLiteStore)
        assert store.db_path == str(tmp_path / "x.db")

    def test_postgres_backend(self):
        app_settings = Settings(DATABASE_BACKEND="postgres", POSTGRES_HOST="db.internal")

        store = create_store(app_settings)

        assert isinstance(store, PostgresStore)
        assert "@db.internal:5432/election_db" in store.dsn

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store(Settings(DATABASE_BACKEND="mongo"))
