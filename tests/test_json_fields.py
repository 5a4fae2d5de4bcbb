from permit_hub.services.json_fields import parse_json_array, permit_for_storage, stringify_array


def test_parse_round_trip_keeps_order():
    assert parse_json_array(stringify_array(["Fire", "Fumes", "Burns"])) == ["Fire", "Fumes", "Burns"]


def test_parse_never_raises():
    assert parse_json_array(None) == []
    assert parse_json_array("") == []
    assert parse_json_array("not json") == []
    assert parse_json_array('{"a": 1}') == []
    assert parse_json_array("42") == []


def test_parse_passes_lists_through():
    items = [{"name": "A"}]
    assert parse_json_array(items) is items


def test_stringify_empty_and_existing_text():
    assert stringify_array(None) == "[]"
    assert stringify_array([]) == "[]"
    assert stringify_array('["x"]') == '["x"]'


def test_permit_for_storage_only_touches_present_array_keys():
    out = permit_for_storage({"title": "T", "hazards": ["Fire"], "equipment": None})
    assert out["title"] == "T"
    assert out["hazards"] == '["Fire"]'
    assert out["equipment"] is None
    assert "precautions" not in out
