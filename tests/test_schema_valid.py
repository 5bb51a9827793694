"""
Validation tests - payload shape checks for single records and batches.
"""

import pytest

from context_server.core.validation import ContextPayload, validate_batch, validate_context


class TestContextValidation:
    """Single record validation never raises and reports every bad field."""

    def test_valid_payload_passes(self):
        result = validate_context({"key": "k1", "value": {"n": 1}, "metadata": {"type": "test"}})
        assert result.ok
        assert result.record.key == "k1"
        assert result.record.value == {"n": 1}
        assert result.record.metadata == {"type": "test"}

    def test_key_is_stripped(self):
        result = validate_context({"key": "  padded  ", "value": "v"})
        assert result.record.key == "padded"

    def test_metadata_is_optional(self):
        result = validate_context({"key": "k", "value": "v"})
        assert result.ok
        assert result.record.metadata is None

    def test_explicit_null_metadata_is_accepted(self):
        result = validate_context({"key": "k", "value": "v", "metadata": None})
        assert result.ok
        assert result.record.metadata is None

    @pytest.mark.parametrize("value", ["text", '{"a": 1}', 0, -1.5, False, [], [1, [2]], {}, {"a": {"b": None}}])
    def test_json_values_are_accepted(self, value):
        result = validate_context({"key": "k", "value": value})
        assert result.ok, result.errors
        assert result.record.value == value

    def test_empty_key_fails(self):
        result = validate_context({"key": "", "value": "v"})
        assert not result.ok
        assert result.errors[0].field == "key"
        assert "key cannot be empty" in result.errors[0].message

    def test_blank_value_fails(self):
        result = validate_context({"key": "k", "value": "   "})
        assert not result.ok
        assert "value cannot be empty" in result.errors[0].message

    def test_null_value_fails(self):
        result = validate_context({"key": "k", "value": None})
        assert not result.ok
        assert result.errors[0].field == "value"

    def test_missing_fields_are_all_reported(self):
        result = validate_context({})
        fields = {e.field for e in result.errors}
        assert fields == {"key", "value"}

    def test_every_violated_field_is_reported(self):
        result = validate_context({"key": "", "value": "", "metadata": "not a map"})
        fields = {e.field for e in result.errors}
        assert {"key", "value", "metadata"} <= fields

    def test_non_string_key_fails(self):
        result = validate_context({"key": 12, "value": "v"})
        assert not result.ok
        assert result.errors[0].field == "key"

    def test_metadata_must_be_a_map(self):
        result = validate_context({"key": "k", "value": "v", "metadata": ["a", "b"]})
        assert not result.ok
        assert result.errors[0].field == "metadata"

    def test_non_finite_number_fails(self):
        result = validate_context({"key": "k", "value": float("nan")})
        assert not result.ok

    def test_unserializable_value_fails(self):
        result = validate_context({"key": "k", "value": object()})
        assert not result.ok
        assert result.errors[0].field.startswith("value")

    @pytest.mark.parametrize("payload", [None, "string", 42, ["key", "value"]])
    def test_non_object_payload_fails_without_raising(self, payload):
        result = validate_context(payload)
        assert not result.ok
        assert result.errors[0].field == "payload"

    def test_oversized_value_fails(self, monkeypatch):
        from context_server.core import validation
        monkeypatch.setattr(validation, "MAX_VALUE_SIZE", 10)

        result = validate_context({"key": "k", "value": "x" * 50})
        assert not result.ok
        assert "maximum size" in result.errors[0].message

    def test_unknown_fields_are_ignored(self):
        result = validate_context({"key": "k", "value": "v", "created_at": "2020-01-01"})
        assert result.ok

    def test_error_details_are_serializable(self):
        result = validate_context({"key": ""})
        for detail in result.error_details():
            assert set(detail) == {"field", "message"}

    def test_model_can_be_used_directly(self):
        payload = ContextPayload(key="k", value=[1, 2])
        assert payload.value == [1, 2]


class TestBatchValidation:

    def test_all_valid(self):
        result = validate_batch([{"key": "a", "value": 1}, {"key": "b", "value": 2}])
        assert result.ok
        assert [r.key for r in result.records] == ["a", "b"]

    def test_bad_items_are_identified_by_index(self):
        result = validate_batch([
            {"key": "a", "value": 1},
            {"key": "", "value": 2},
            {"key": "c"},
        ])
        assert not result.ok
        assert [e["index"] for e in result.errors] == [1, 2]
        assert result.errors[0]["key"] == ""
        assert result.errors[1]["key"] == "c"

    def test_empty_batch_fails(self):
        result = validate_batch([])
        assert not result.ok
        assert "at least one" in result.errors[0]["errors"][0]["message"]

    def test_oversized_batch_fails(self):
        result = validate_batch([{"key": f"k{i}", "value": i} for i in range(4)], max_batch_size=3)
        assert not result.ok
        assert "maximum size" in result.errors[0]["errors"][0]["message"]

    @pytest.mark.parametrize("items", [None, {"key": "a", "value": 1}, "not a list"])
    def test_non_list_batch_fails(self, items):
        result = validate_batch(items)
        assert not result.ok
