"""Tests for database setup, configuration and the transaction helper."""

import pytest

from database_functions import (
    initialize_database,
    get_all_configuration_values,
    get_configuration_value_by_key,
    add_configuration_values,
    build_where,
    get_db_transaction,
    get_automation,
    insert_automation,
)
from server import build_service

from conftest import APP, HOME, OWNER


class TestInitialization:

    def test_defaults_are_seeded(self, db_paths):
        home_db, _ = db_paths

        values = {row["key"]: row["value"] for row in get_all_configuration_values(home_db)}

        assert values["rule_engine_url"] == "http://localhost:8080/rule"
        assert values["lock_timeout"] == "30"

    def test_second_run_keeps_overrides(self, db_paths):
        home_db, logs_db = db_paths
        add_configuration_values(home_db, [("lock_timeout", "5", "s")])

        initialize_database(home_db, logs_db)

        assert get_configuration_value_by_key(home_db, "lock_timeout")["value"] == "5"

    def test_unknown_key(self, db_paths):
        assert get_configuration_value_by_key(db_paths[0], "missing") == {"value": None}

    def test_service_uses_overrides(self, db_paths):
        home_db, logs_db = db_paths
        add_configuration_values(home_db, [
            ("rule_engine_url", "https://rules.example.com/rule/", ""),
            ("rule_engine_timeout", "2.5", "s"),
            ("lock_timeout", "1", "s"),
        ])

        service = build_service(home_db, logs_db)

        assert service.rule_engine.base_url == "https://rules.example.com/rule"
        assert service.rule_engine.timeout == 2.5
        assert service.lock_timeout == 1.0


def test_build_where_skips_missing_filters():
    where, params = build_where([("id = ?", "A1"), ("name = ?", None), ("home_id = ?", "")])

    assert where == "id = ?"
    assert params == ("A1",)
    assert build_where([("id = ?", None)]) == ("1 = 1", ())


class TestTransaction:
    """Nothing written in a transaction survives without an explicit commit."""

    def automation(self):
        return {"id": "A1", "userId": OWNER, "homeId": HOME, "appCode": APP, "name": "Evening", "active": True}

    def test_uncommitted_is_rolled_back(self, home_db):
        with get_db_transaction(home_db) as con:
            insert_automation(con, self.automation(), 0, OWNER)

        assert get_automation(home_db, "A1", HOME, APP) is None

    def test_rolled_back_on_error(self, home_db):
        with pytest.raises(RuntimeError):
            with get_db_transaction(home_db) as con:
                insert_automation(con, self.automation(), 0, OWNER)
                raise RuntimeError("rule engine down")

        assert get_automation(home_db, "A1", HOME, APP) is None

    def test_committed(self, home_db):
        with get_db_transaction(home_db) as con:
            insert_automation(con, self.automation(), 0, OWNER)
            con.commit()

        stored = get_automation(home_db, "A1", HOME, APP)
        assert stored["active"] is True
        assert stored["inputIds"] == []
        assert stored["raw"] == {}
