"""Shared fixtures: a seeded temporary database and a fake rule engine."""

import threading
import time

import pytest

from database_functions import (
    initialize_database,
    add_users,
    add_homes,
    add_areas,
    add_devices,
)
from automation_service import AutomationService
from semaphore_functions import Semaphore
from schemas import Automation_In

APP = "app"
HOME = "H1"
OWNER = "u1"
MEMBER = "u2"


class FakeRuleEngine:
    """Stands in for RuleEngineClient and records every call."""

    def __init__(self):
        self.create_results = []
        self.update_result = True
        self.delete_result = []
        self.delete_device_result = []
        self.update_delay = 0
        self.calls = []
        self._lock = threading.Lock()
        self._counter = 0

    def _record(self, name, payload):
        with self._lock:
            self.calls.append((name, payload))

    def calls_of(self, name):
        return [payload for call, payload in self.calls if call == name]

    def create(self, definition):
        self._record("create", definition)
        if self.create_results:
            return self.create_results.pop(0)
        with self._lock:
            self._counter += 1
            return f"rule-{self._counter}"

    def update(self, definition):
        self._record("update", definition)
        if self.update_delay:
            time.sleep(self.update_delay)
        return self.update_result

    def delete(self, automation_id):
        self._record("delete", automation_id)
        if callable(self.delete_result):
            return self.delete_result(automation_id)
        return self.delete_result

    def delete_device(self, device_id):
        self._record("delete_device", device_id)
        return self.delete_device_result


@pytest.fixture
def db_paths(tmp_path):
    """Initialized home and logs databases."""
    home_db = str(tmp_path / "home_service.db")
    logs_db = str(tmp_path / "home_service_logs.db")
    initialize_database(home_db, logs_db)
    return home_db, logs_db


@pytest.fixture
def home_db(db_paths):
    """Database seeded with one home shared by an owner and a member."""
    home_db, _ = db_paths
    add_users(home_db, [(OWNER, "Owner", "owner@example.com"), (MEMBER, "Member", "member@example.com")])
    add_homes(home_db, [(HOME, OWNER, APP, "Home", 1), (HOME, MEMBER, APP, "Home", 0)])
    add_areas(home_db, [("A1", OWNER, HOME, APP, "Kitchen"), ("A2", MEMBER, HOME, APP, "Bedroom")])
    add_devices(home_db, [
        {"id": "d1", "user_id": OWNER, "home_id": HOME, "app_code": APP, "area_id": "A1", "name": "Lamp",
         "type_name": "light", "vendor_name": "Acme"},
        {"id": "d2", "user_id": OWNER, "home_id": HOME, "app_code": APP, "area_id": "A1", "name": "Sensor",
         "type_name": "motion"},
        {"id": "hc1", "user_id": OWNER, "home_id": HOME, "app_code": APP, "area_id": "A1", "name": "Hub"},
        {"id": "c1", "user_id": OWNER, "home_id": HOME, "app_code": APP, "name": "Zigbee lamp", "parent_id": "hc1"},
        {"id": "c2", "user_id": OWNER, "home_id": HOME, "app_code": APP, "name": "Other hub lamp", "parent_id": "HC2"},
        {"id": "m1", "user_id": MEMBER, "home_id": HOME, "app_code": APP, "area_id": "A2", "name": "Member lamp"},
    ])
    return home_db


@pytest.fixture
def logs_db(db_paths):
    return db_paths[1]


@pytest.fixture
def engine():
    return FakeRuleEngine()


@pytest.fixture
def service(home_db, logs_db, engine):
    return AutomationService(home_db, engine, Semaphore(), lock_timeout=5, logs_db_path=logs_db)


def make_automation_in(**overrides):
    """Valid creation request for the seeded home, owned by the home owner."""
    data = {
        "homeId": HOME,
        "userId": OWNER,
        "appCode": APP,
        "name": "Evening",
        "type": "rule",
        "logic": "and",
        "active": True,
        "hcId": "",
        "timezone": "+07:00",
        "trigger": {"type": "time", "configuration": {"start": "0 18 * * *", "end": "0 23 * * *"}},
        "input": [{"id": "d2", "state": {"motion": True}, "operator": {"motion": "eq"}}],
        "output": [{"type": "device", "id": "d1", "state": {"onoff": True}, "delay": 0}],
    }
    data.update(overrides)
    return Automation_In(**data)


@pytest.fixture
def created(service, engine):
    """An automation A1 created by the owner, not on a hub controller."""
    engine.create_results = ["A1"]
    res = service.create_automation(make_automation_in(
        input=[{"id": "d1", "state": {"onoff": True}, "operator": {"onoff": "eq"}}],
        output=[{"type": "device", "id": "d2", "state": {"onoff": False}, "delay": 5}],
    ))
    assert res["status_code"] == 201
    engine.calls.clear()
    return res["data"]
