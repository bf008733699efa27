"""
Tests for field payload normalization and the readers used by the evaluators.
"""

from decimal import Decimal

import pytest

from storecheck.core.field_values import (
    FieldResponse,
    build_field_response,
    display_value,
    read_decimal,
    read_document_number,
    read_selected,
    read_yes_no,
)


class TestBuildFieldResponse:
    def test_monetary_number_keeps_subtype(self):
        r = build_field_response(5, "number", {"subtype": "monetario", "number": "12.50"})
        assert r.value_number == 12.5
        assert r.value_json == {"subtype": "monetario"}

    def test_yes_no_with_comment(self):
        r = build_field_response(5, "yes_no", {"answer": "nao", "comment": "porta empenada"})
        assert r.value_text == "nao"
        assert r.value_json["comment"] == "porta empenada"

    @pytest.mark.parametrize("field_type,value,attr,expected", [
        ("rating", 4, "value_number", 4.0),
        ("checkbox_multiple", ["luvas", "touca"], "value_json", ["luvas", "touca"]),
        ("photo", "https://cdn.test/1.jpg", "value_json", ["https://cdn.test/1.jpg"]),
        ("gps", {"latitude": -8.1, "longitude": -34.9}, "value_json", {"latitude": -8.1, "longitude": -34.9}),
        ("dropdown", "Ruim", "value_text", "Ruim"),
        ("number", "abc", "value_number", None),
    ])
    def test_types(self, field_type, value, attr, expected):
        assert getattr(build_field_response(1, field_type, value), attr) == expected

    def test_no_answer(self):
        assert build_field_response(1, "text", None) is None


class TestReaders:
    def test_decimal_from_number_and_text(self):
        assert read_decimal(FieldResponse(1, value_number=100.01)) == Decimal("100.01")
        assert read_decimal(FieldResponse(1, value_text=" 1234,56 ")) == Decimal("1234.56")
        assert read_decimal(FieldResponse(1, value_text="n/a")) is None
        assert read_decimal(FieldResponse(1)) is None

    def test_decimal_brazilian_thousands(self):
        assert read_decimal(FieldResponse(1, value_text="1.234,56")) == Decimal("1234.56")
        assert read_decimal(FieldResponse(1, value_text="R$ 1.234,56")) is None
        assert read_decimal(FieldResponse(1, value_text="12.50")) == Decimal("12.50")

    def test_decimal_rejects_non_finite(self):
        assert read_decimal(FieldResponse(1, value_text="Infinity")) is None
        assert read_decimal(FieldResponse(1, value_number=float("nan"))) is None

    def test_document_number(self):
        assert read_document_number(FieldResponse(1, value_text=" 000123 ")) == "000123"
        assert read_document_number(FieldResponse(1, value_number=12345.0)) == "12345"
        assert read_document_number(FieldResponse(1)) == ""

    def test_yes_no_prefers_nested_answer(self):
        r = FieldResponse(1, value_text="sim", value_json={"answer": "nao"})
        assert read_yes_no(r) == "nao"

    def test_selected_from_json_text(self):
        assert read_selected(FieldResponse(1, value_text='["a", "b"]')) == ["a", "b"]
        assert read_selected(FieldResponse(1, value_text="a,b")) == []

    def test_display_value(self):
        assert display_value("number", FieldResponse(1, value_number=-2.0)) == "-2"
        assert display_value("number", FieldResponse(1, value_number=3.5)) == "3.5"
        assert display_value("checkbox_multiple", FieldResponse(1, value_json=["a", "b"])) == "a, b"
