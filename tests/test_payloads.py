"""Unit tests for create/update/delete request shaping."""

from datetime import date
from decimal import Decimal

import pytest

from errors import EmptyUpdate, InvalidFieldValue, InvalidIdentifier, MissingRequiredField
from payloads import build_create_payload, build_delete_key, build_update_payload


class TestCreatePayload:
    def test_valid_body(self, sample_body):
        values = build_create_payload(dict(sample_body, firstBrokenDate="2019-08-10"))
        assert values == {
            "color": "#c684e3",
            "description": "Rear bumper cracked",
            "year": 2020,
            "price": Decimal("978.81"),
            "first_broken_date": date(2019, 8, 10),
            "body_id": 7,
            "model_id": 6,
            "is_active": True,
        }

    def test_optional_fields_may_be_omitted(self, sample_body):
        body = dict(sample_body)
        del body["price"]
        values = build_create_payload(body)
        assert "price" not in values
        assert "first_broken_date" not in values

    @pytest.mark.parametrize("field", ["color", "description", "year", "bodyId", "modelId"])
    def test_missing_required_field(self, sample_body, field):
        body = dict(sample_body)
        del body[field]
        with pytest.raises(MissingRequiredField) as exc_info:
            build_create_payload(body)
        assert exc_info.value.field == field
        assert field in str(exc_info.value)

    def test_blank_required_counts_as_missing(self, sample_body):
        with pytest.raises(MissingRequiredField):
            build_create_payload(dict(sample_body, color="  "))

    def test_snake_case_aliases(self, sample_body):
        body = dict(sample_body)
        body["body_id"] = body.pop("bodyId")
        body["model_id"] = body.pop("modelId")
        values = build_create_payload(body)
        assert values["body_id"] == 7
        assert values["model_id"] == 6

    def test_unknown_and_immutable_keys_dropped(self, sample_body):
        values = build_create_payload(dict(sample_body, id=99, createdDate="2000-01-01", owner="x"))
        assert "id" not in values
        assert "created_date" not in values
        assert "owner" not in values

    def test_blob_decoded(self, sample_body):
        values = build_create_payload(dict(sample_body, blob="SW1hZ2UgMQ=="))
        assert values["blob"] == b"Image 1"

    def test_bad_types(self, sample_body):
        with pytest.raises(InvalidFieldValue):
            build_create_payload(dict(sample_body, year="old"))
        with pytest.raises(InvalidFieldValue):
            build_create_payload(dict(sample_body, blob="not base64!"))
        with pytest.raises(InvalidFieldValue):
            build_create_payload(dict(sample_body, year=True))

    @pytest.mark.parametrize("field,value", [
        ("year", "99999999999999999999"),
        ("year", 2 ** 31),
        ("bodyId", -(2 ** 31) - 1),
        ("price", "1e12"),
        ("price", -10000000000),
    ])
    def test_out_of_range_numbers(self, sample_body, field, value):
        with pytest.raises(InvalidFieldValue) as exc_info:
            build_create_payload(dict(sample_body, **{field: value}))
        assert exc_info.value.field == field
        assert "out of range" in exc_info.value.message

    def test_largest_int_and_price_accepted(self, sample_body):
        values = build_create_payload(dict(sample_body, year=2 ** 31 - 1, price="9999999999.99"))
        assert values["year"] == 2147483647
        assert values["price"] == Decimal("9999999999.99")

    def test_body_must_be_object(self):
        with pytest.raises(InvalidFieldValue):
            build_create_payload(["color"])


class TestUpdatePayload:
    def test_only_supplied_fields(self):
        record_id, changes = build_update_payload(3, {"color": "#fff"})
        assert record_id == 3
        assert changes == {"color": "#fff"}

    def test_id_and_created_date_ignored(self):
        _, changes = build_update_payload("3", {"id": 10, "createdDate": "2020-01-01", "year": "2001"})
        assert changes == {"year": 2001}

    def test_null_clears_optional(self):
        _, changes = build_update_payload(1, {"price": None, "image": None})
        assert changes == {"price": None, "image": None}

    @pytest.mark.parametrize("field", ["color", "year", "bodyId", "isActive"])
    def test_null_rejected_for_not_null_fields(self, field):
        with pytest.raises(InvalidFieldValue):
            build_update_payload(1, {field: None})

    def test_empty_change_set(self):
        with pytest.raises(EmptyUpdate):
            build_update_payload(1, {})
        with pytest.raises(EmptyUpdate):
            build_update_payload(1, {"createdDate": "2020-01-01"})

    def test_invalid_id(self):
        with pytest.raises(InvalidIdentifier):
            build_update_payload("abc", {"color": "#fff"})
        with pytest.raises(InvalidIdentifier):
            build_update_payload("99999999999999999999", {"color": "#fff"})


class TestDeleteKey:
    @pytest.mark.parametrize("value,expected", [(1, 1), ("42", 42), (" 7 ", 7), ("2147483647", 2147483647)])
    def test_valid(self, value, expected):
        assert build_delete_key(value) == expected

    @pytest.mark.parametrize("value", [0, -1, "0", "-5", "abc", "1.5", "", None, True, 2.0, "99999999999999999999", 2 ** 31])
    def test_invalid(self, value):
        with pytest.raises(InvalidIdentifier):
            build_delete_key(value)
