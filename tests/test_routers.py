"""HTTP tests for the automation, home and entity routers."""

import pytest
from fastapi.testclient import TestClient

from server import build_service, create_api

from conftest import APP, HOME, MEMBER, OWNER

AUTOMATION_URL = "/home/v1/automation"


@pytest.fixture
def client(service):
    return TestClient(create_api(service))


def automation_body(**overrides):
    body = {
        "homeId": HOME,
        "userId": OWNER,
        "appCode": APP,
        "name": "Evening",
        "type": "rule",
        "logic": "and",
        "active": True,
        "hcId": "",
        "timezone": "+07:00",
        "trigger": {"type": "time", "configuration": {"start": "0 18 * * *"}},
        "input": [{"id": "d2", "state": {"motion": True}, "operator": {"motion": "eq"}}],
        "output": [{"type": "device", "id": "d1", "state": {"onoff": True}, "delay": 0}],
    }
    body.update(overrides)
    return body


class TestAutomationRouter:

    def test_create(self, client, engine):
        engine.create_results = ["A1"]

        response = client.post(AUTOMATION_URL, json=automation_body())

        assert response.status_code == 201
        assert response.json()["data"]["id"] == "A1"

    def test_create_unknown_device(self, client, engine):
        response = client.post(AUTOMATION_URL, json=automation_body(input=[{"id": "d9"}]))

        assert response.status_code == 404
        assert response.json() == {"detail": {
            "code": "NSERR_ENTITYNOTFOUND",
            "data": [{"id": "d9", "code": "NSERR_ENTITYNOTFOUND"}],
        }}
        assert engine.calls == []

    def test_create_invalid_body(self, client):
        assert client.post(AUTOMATION_URL, json=automation_body(logic="xor")).status_code == 422
        assert client.post(AUTOMATION_URL, json=automation_body(pos=500)).status_code == 422
        assert client.post(AUTOMATION_URL, json=automation_body(
            output=[{"type": "webhook", "id": "x"}])).status_code == 422

    def test_get(self, client, created):
        response = client.get(AUTOMATION_URL, params={"homeId": HOME, "userId": MEMBER, "appCode": APP})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "done"
        assert [a["id"] for a in body["data"]] == ["A1"]
        assert body["data"][0]["owner"] is False

    def test_get_filtered(self, client, created):
        response = client.get(AUTOMATION_URL, params={"homeId": HOME, "userId": OWNER, "appCode": APP, "inputId": "d9"})

        assert response.json()["data"] == []

    def test_update(self, client, engine, created):
        response = client.put(AUTOMATION_URL, json={
            "id": "A1", "homeId": HOME, "userId": OWNER, "appCode": APP, "active": False})

        assert response.status_code == 200
        assert response.json()["data"]["active"] is False
        assert len(engine.calls_of("update")) == 1

    def test_update_nothing_changed(self, client, created):
        response = client.put(AUTOMATION_URL, json={
            "id": "A1", "homeId": HOME, "userId": OWNER, "appCode": APP, "active": True})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "NSERR_NOTHINGTOBECHANGED"

    def test_delete(self, client, created):
        body = {"id": "A1", "homeId": HOME, "userId": OWNER, "appCode": APP}

        response = client.request("DELETE", AUTOMATION_URL, json=body)

        assert response.status_code == 200
        assert response.json() == {"message": "Automation has been deleted"}
        assert client.request("DELETE", AUTOMATION_URL, json=body).status_code == 404


class TestHomeRouter:

    def test_member_leaves(self, client):
        response = client.request("DELETE", "/home/v1/home", json={"id": HOME, "userId": MEMBER, "appCode": APP})

        assert response.status_code == 200
        assert response.json() == {"message": "You have left the home"}

    def test_unknown_home(self, client):
        response = client.request("DELETE", "/home/v1/home", json={"id": "H9", "userId": OWNER, "appCode": APP})

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NSERR_HOMENOTFOUND"


class TestEntityRouter:

    def test_delete(self, client, engine, created):
        engine.delete_device_result = ["A1"]

        response = client.request("DELETE", "/home/v1/entity",
                                  json={"id": "d1", "homeId": HOME, "userId": OWNER, "appCode": APP})

        assert response.status_code == 200
        assert response.json()["data"] == ["A1"]


def test_build_service_reads_configuration(db_paths):
    home_db, logs_db = db_paths

    service = build_service(home_db, logs_db)

    assert service.rule_engine.base_url == "http://localhost:8080/rule"
    assert service.rule_engine.timeout == 10.0
    assert service.lock_timeout == 30.0
