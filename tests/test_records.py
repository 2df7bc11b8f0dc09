from personal_historian.utils.records import is_unknown, known_subset, merge_fields, missing_fields

ATTRS = ["context", "work_state", "current_activity", "eating_trigger"]


def test_is_unknown() -> None:
    assert is_unknown(None)
    assert is_unknown("  ")
    assert not is_unknown(0)
    assert not is_unknown("alone")


def test_merge_never_clears_populated_fields() -> None:
    existing = {"message_id": "1", "context": "alone", "work_state": None}
    merged = merge_fields(existing, {"context": None, "work_state": "on break"})

    assert merged == {"message_id": "1", "context": "alone", "work_state": "on break"}
    # Pure: the input is untouched
    assert existing["work_state"] is None


def test_merge_adds_new_keys() -> None:
    merged = merge_fields({"message_id": "1"}, {"photo_filename": "a.jpg"})
    assert merged["photo_filename"] == "a.jpg"


def test_missing_fields_keeps_attribute_order() -> None:
    record = {"context": "alone", "current_activity": ""}
    assert missing_fields(record, ATTRS) == ["work_state", "current_activity", "eating_trigger"]


def test_known_subset_filters_keys_and_unknowns() -> None:
    values = {"context": "x", "work_state": None, "mood": "happy"}
    assert known_subset(values, ["context", "work_state"]) == {"context": "x"}
