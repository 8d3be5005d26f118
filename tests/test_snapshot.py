"""Tests for snapshot shaping: defaults, merges and fingerprints."""

from foamsync.core.snapshot import (
    DEFAULT_SNAPSHOT,
    default_snapshot,
    fingerprint,
    merge_over_defaults,
    missing_crew_pin,
    serialize,
    shallow_merge,
    strip_metadata,
)


class TestDefaults:
    def test_default_snapshot_is_a_fresh_copy(self):
        a = default_snapshot()
        a["customers"].append({"id": "c1"})
        a["costs"]["openCell"] = 99
        assert default_snapshot()["customers"] == []
        assert DEFAULT_SNAPSHOT["costs"]["openCell"] == 0

    def test_default_snapshot_has_every_section(self):
        snap = default_snapshot()
        for key in (
            "companyProfile",
            "warehouse",
            "costs",
            "yields",
            "expenses",
            "savedEstimates",
            "customers",
            "materialLogs",
            "lifetimeUsage",
        ):
            assert key in snap
        assert snap["warehouse"]["items"] == []


class TestMergeOverDefaults:
    def test_partial_config_keeps_other_default_fields(self, cloud_snapshot):
        merged = merge_over_defaults(cloud_snapshot)
        assert merged["costs"]["openCell"] == 1850
        assert merged["costs"]["closedCell"] == 0
        assert merged["costs"]["laborRate"] == 0
        assert merged["companyProfile"]["companyName"] == "Acme Foam"
        assert merged["companyProfile"]["phone"] == ""

    def test_collections_are_taken_from_the_pull(self, cloud_snapshot):
        merged = merge_over_defaults(cloud_snapshot)
        assert merged["savedEstimates"][0]["id"] == "e1"
        assert merged["warehouse"]["items"] == [{"id": "i1", "name": "Gun"}]
        assert merged["warehouse"]["openCellSets"] == 4

    def test_session_metadata_is_dropped(self, cloud_snapshot):
        assert "session" not in merge_over_defaults(cloud_snapshot)

    def test_none_gives_defaults(self):
        assert merge_over_defaults(None) == default_snapshot()

    def test_non_dict_config_falls_back_to_default(self):
        merged = merge_over_defaults({"yields": None})
        assert merged["yields"] == DEFAULT_SNAPSHOT["yields"]

    def test_input_is_not_mutated(self, cloud_snapshot):
        before = serialize(cloud_snapshot)
        merged = merge_over_defaults(cloud_snapshot)
        merged["costs"]["openCell"] = 1
        assert serialize(cloud_snapshot) == before


class TestShallowMerge:
    def test_top_level_keys_replace_whole_values(self):
        current = default_snapshot()
        current["costs"]["laborRate"] = 45
        merged = shallow_merge(current, {"costs": {"openCell": 10}, "session": {"x": 1}})
        assert merged["costs"] == {"openCell": 10}
        assert "session" not in merged
        assert current["costs"]["laborRate"] == 45


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})

    def test_any_change_changes_the_fingerprint(self):
        snap = default_snapshot()
        before = fingerprint(snap)
        snap["customers"].append({"id": "c1"})
        assert fingerprint(snap) != before

    def test_serialize_is_compact_and_sorted(self):
        assert serialize({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


def test_strip_metadata():
    assert strip_metadata({"session": {}, "costs": {}}) == {"costs": {}}


def test_missing_crew_pin():
    snap = default_snapshot()
    assert missing_crew_pin(snap)
    snap["companyProfile"]["crewAccessPin"] = "1234"
    assert not missing_crew_pin(snap)
    assert missing_crew_pin({})
