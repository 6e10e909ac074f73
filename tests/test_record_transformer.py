from __future__ import annotations

from sheetmerge.core.merge.errors import MergeErrorKind
from sheetmerge.core.merge.models import MERGE_SOURCE_FIELD
from sheetmerge.core.merge.transformer import RecordTransformer, TransformStats, append_mapping, missing_options
from sheetmerge.core.store.models import Field, Option, Record
from sheetmerge.core.store.values import MultiSelectValue, OpaqueValue, OptionRef, ScalarValue, SingleSelectValue


TARGET = {
    "Title": Field(id="f1", name="Title", type="text", is_primary=True),
    "Status": Field(id="f2", name="Status", type="singleSelect",
                    options=[Option(id="t-open", name="Open"), Option(id="t-closed", name="Closed")]),
    "Tags": Field(id="f3", name="Tags", type="multiSelect",
                  options=[Option(id="t-red", name="red"), Option(id="t-blue", name="blue")]),
    "Files": Field(id="f4", name="Files", type="attachment"),
    MERGE_SOURCE_FIELD: Field(id="f5", name=MERGE_SOURCE_FIELD, type="text"),
}
SAME_NAMES = {"Title": "Title", "Status": "Status", "Tags": "Tags", "Files": "Files"}


def test_single_select_resolved_by_name_not_copied_id():
    rec = Record(id="r1", values={"Status": SingleSelectValue(OptionRef(name="Closed", id="src-closed"))})
    out = RecordTransformer().transform(rec, "East", SAME_NAMES, TARGET)
    assert out["Status"] == "t-closed"


def test_unknown_single_select_option_leaves_cell_empty():
    stats = TransformStats()
    rec = Record(id="r1", values={"Title": ScalarValue("Acme"), "Status": SingleSelectValue(OptionRef(name="Lost"))})

    out = RecordTransformer().transform(rec, "East", SAME_NAMES, TARGET, stats)

    assert "Status" not in out
    assert out["Title"] == "Acme"
    assert stats.dropped_options == 1
    assert stats.issues[0]["code"] == MergeErrorKind.OPTION_RESOLUTION_FAILED.value
    assert stats.issues[0]["option"] == "Lost"


def test_multi_select_drops_only_unresolved_names():
    stats = TransformStats()
    value = MultiSelectValue((OptionRef("red"), OptionRef("green"), OptionRef("blue")))
    out = RecordTransformer().transform(Record(id="r1", values={"Tags": value}), "East", SAME_NAMES, TARGET, stats)

    assert out["Tags"] == ["t-red", "t-blue"]
    assert stats.dropped_options == 1


def test_multi_select_with_nothing_resolved_is_unset():
    value = MultiSelectValue((OptionRef("green"),))
    out = RecordTransformer().transform(Record(id="r1", values={"Tags": value}), "East", SAME_NAMES, TARGET)
    assert "Tags" not in out


def test_text_value_resolves_against_select_target():
    rec = Record(id="r1", values={"Status": ScalarValue("Open")})
    out = RecordTransformer().transform(rec, "East", SAME_NAMES, TARGET)
    assert out["Status"] == "t-open"


def test_other_values_pass_through_and_absent_values_skipped():
    files = [{"token": "abc", "name": "q3.pdf"}]
    rec = Record(id="r1", values={"Files": OpaqueValue(files)})
    out = RecordTransformer().transform(rec, "East", SAME_NAMES, TARGET)

    assert out["Files"] == files
    assert "Title" not in out
    assert "Tags" not in out


def test_attribution_always_set_and_renamed_fields_followed():
    rec = Record(id="r1", values={"Region": ScalarValue("NY")})
    target = dict(TARGET, Region_East=Field(id="f9", name="Region_East", type="text"))

    out = RecordTransformer().transform(rec, "East", {"Region": "Region_East"}, target)

    assert out == {"Region_East": "NY", MERGE_SOURCE_FIELD: "East"}


def test_source_value_for_attribution_field_is_overridden():
    rec = Record(id="r1", values={MERGE_SOURCE_FIELD: ScalarValue("stale")})
    out = RecordTransformer().transform(rec, "West", {MERGE_SOURCE_FIELD: MERGE_SOURCE_FIELD}, TARGET)
    assert out[MERGE_SOURCE_FIELD] == "West"


def test_fields_without_target_are_dropped():
    rec = Record(id="r1", values={"Title": ScalarValue("Acme"), "Owner": ScalarValue("peter")})
    mapping = append_mapping(list(TARGET.values()))

    out = RecordTransformer().transform(rec, "East", mapping, TARGET)

    assert "Owner" not in out
    assert MERGE_SOURCE_FIELD not in mapping
    assert out["Title"] == "Acme"


def test_missing_options_lists_each_name_once():
    records = [
        Record(id="r1", values={"Status": SingleSelectValue(OptionRef("Lost")), "Tags": MultiSelectValue((OptionRef("green"), OptionRef("red")))}),
        Record(id="r2", values={"Status": SingleSelectValue(OptionRef("Lost")), "Title": ScalarValue("x")}),
    ]
    assert missing_options(records, SAME_NAMES, TARGET) == {"Status": ["Lost"], "Tags": ["green"]}


def test_issue_list_is_capped_but_count_is_not():
    stats = TransformStats()
    for i in range(80):
        stats.option_miss(table_name="East", field_name="Status", option_name=str(i))
    assert stats.dropped_options == 80
    assert len(stats.issues) == 50
