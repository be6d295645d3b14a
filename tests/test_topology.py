"""Tests for the hub-controller topology rule and reference resolution."""

import pytest

from automation_functions import (
    is_entity_suitable,
    is_in_hc,
    resolve_inputs,
    resolve_outputs,
    sort_by_id,
)
from classes import ErrorCode

from conftest import APP, HOME, OWNER


class TestIsEntitySuitable:
    """The three rejection cases and the two accepted combinations."""

    @pytest.mark.parametrize("hc_id", ["", None])
    def test_standalone_device_outside_hub(self, hc_id):
        assert is_entity_suitable({"parentId": None}, hc_id)
        assert is_entity_suitable({"parentId": ""}, hc_id)

    def test_child_of_same_hub(self):
        assert is_entity_suitable({"parentId": "HC1"}, "HC1")

    def test_child_of_other_hub_rejected(self):
        assert not is_entity_suitable({"parentId": "HC2"}, "HC1")

    def test_standalone_device_in_hub_rejected(self):
        assert not is_entity_suitable({"parentId": None}, "HC1")

    def test_hub_child_outside_hub_rejected(self):
        assert not is_entity_suitable({"parentId": "HC1"}, "")

    def test_empty_string_is_not_a_hub(self):
        assert not is_in_hc("")
        assert not is_in_hc(None)
        assert is_in_hc("HC1")


class TestResolveInputs:
    """Every reference is checked and all failures are reported."""

    def test_all_resolved(self, home_db):
        resolved = resolve_inputs(home_db, [{"id": "d1", "state": {"onoff": True}, "operator": {"onoff": "eq"}}],
                                  HOME, OWNER, APP, "")

        assert resolved.ok
        assert resolved.ids == ["d1"]
        record = resolved.records[0]
        assert record["name"] == "Lamp"
        assert record["areaName"] == "Kitchen"
        assert record["state"] == {"onoff": True}
        assert record["operator"] == {"onoff": "eq"}

    def test_collects_every_failure(self, home_db):
        inputs = [{"id": "d9"}, {"id": "d1"}, {"id": "c1"}]

        resolved = resolve_inputs(home_db, inputs, HOME, OWNER, APP, "")

        assert not resolved.ok
        assert resolved.failure_list() == [
            {"id": "d9", "code": ErrorCode.NSERR_ENTITYNOTFOUND},
            {"id": "c1", "code": ErrorCode.NSERR_AUTOMATIONENTITYINPUTNOTSUITABLE},
        ]

    def test_hub_rejects_foreign_devices(self, home_db):
        inputs = [{"id": "c1"}, {"id": "c2"}, {"id": "d1"}]

        resolved = resolve_inputs(home_db, inputs, HOME, OWNER, APP, "hc1")

        assert resolved.ids == ["c1"]
        assert [f.id for f in resolved.failures] == ["c2", "d1"]

    def test_repeated_device_is_reported_once(self, home_db):
        inputs = [{"id": "d9"}, {"id": "d1"}, {"id": "d9"}, {"id": "d1"}]

        resolved = resolve_inputs(home_db, inputs, HOME, OWNER, APP, "")

        assert resolved.failure_list() == [{"id": "d9", "code": ErrorCode.NSERR_ENTITYNOTFOUND}]
        assert resolved.ids == ["d1"]

    def test_device_of_other_user_not_found(self, home_db):
        resolved = resolve_inputs(home_db, [{"id": "m1"}], HOME, OWNER, APP, "")

        assert resolved.failure_list() == [{"id": "m1", "code": ErrorCode.NSERR_ENTITYNOTFOUND}]


class TestResolveOutputs:
    """Outputs dispatch on their type."""

    def test_device_output(self, home_db):
        resolved = resolve_outputs(home_db, [{"type": "device", "id": "d1", "state": {"onoff": 1}, "delay": 3}],
                                   HOME, OWNER, APP, "")

        assert resolved.ok
        assert resolved.records[0]["type"] == "device"
        assert resolved.records[0]["delay"] == 3

    def test_device_output_not_suitable(self, home_db):
        resolved = resolve_outputs(home_db, [{"type": "device", "id": "c2"}], HOME, OWNER, APP, "hc1")

        assert resolved.failure_list() == [{"id": "c2", "code": ErrorCode.NSERR_AUTOMATIONENTITYOUTPUTNOTSUITABLE}]

    def test_repeated_output_is_reported_once(self, home_db):
        outputs = [{"type": "device", "id": "c2"}, {"type": "device", "id": "c2"},
                   {"type": "device", "id": "d1"}, {"type": "device", "id": "d1"}]

        resolved = resolve_outputs(home_db, outputs, HOME, OWNER, APP, "")

        assert [f.id for f in resolved.failures] == ["c2"]
        assert resolved.ids == ["d1"]

    def test_missing_scene(self, home_db):
        resolved = resolve_outputs(home_db, [{"type": "scene", "id": "S9"}], HOME, OWNER, APP, "")

        assert resolved.failure_list() == [{"id": "S9", "code": ErrorCode.NSERR_AUTOMATIONNOTFOUND}]

    def test_notice_is_passed_through(self, home_db):
        notice = {"type": "notice", "delay": 0, "title": "Door open"}

        resolved = resolve_outputs(home_db, [notice], HOME, OWNER, APP, "")

        assert resolved.ok
        assert resolved.ids == []
        assert resolved.records == [notice]

    def test_unknown_type_raises(self, home_db):
        with pytest.raises(ValueError):
            resolve_outputs(home_db, [{"type": "webhook", "id": "x"}], HOME, OWNER, APP, "")


def test_sort_by_id_ignores_submission_order():
    assert sort_by_id([{"id": "b"}, {"id": "a"}]) == sort_by_id([{"id": "a"}, {"id": "b"}])
    assert sort_by_id(None) == []
