"""
Tests for the extraction result model and code normalization.
"""

import pytest
from pydantic import ValidationError

from authinbox.models.extraction import (
    Classification,
    ExtractionResult,
    normalize_code,
)


class TestNormalizeCode:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("04 74 22", "047422"),
            ("123-456", "123456"),
            (" 98_76.54 ", "987654"),
            ("AB·CD", "ABCD"),
            ("G-123456", "G123456"),
        ],
    )
    def test_strips_separators(self, raw, expected):
        assert normalize_code(raw) == expected

    def test_links_are_left_alone(self):
        link = "https://example.com/verify?token=a-b_c"
        assert normalize_code(f"  {link} ") == link


class TestExtractionResult:
    def test_wire_names_map_to_attributes(self):
        result = ExtractionResult.model_validate({
            "title": " sender@example.com ",
            "code": "04 74 22",
            "topic": "login",
            "codeExist": 1,
        })
        assert result.code_exists is True
        assert result.sender_address == "sender@example.com"
        assert result.code == "047422"

    def test_numeric_code_is_stringified(self):
        result = ExtractionResult.model_validate({
            "title": "a@b.c", "code": 123456, "topic": "login", "codeExist": 1,
        })
        assert result.code == "123456"

    def test_no_code_needs_no_other_fields(self):
        result = ExtractionResult.model_validate({"codeExist": 0})
        assert result.code_exists is False
        assert result.classification is None

    def test_code_exists_requires_title(self):
        with pytest.raises(ValidationError):
            ExtractionResult.model_validate({"code": "1", "topic": "x", "codeExist": 1})

    def test_whitespace_only_topic_counts_as_empty(self):
        with pytest.raises(ValidationError):
            ExtractionResult.model_validate({
                "title": "a@b.c", "code": "1", "topic": "   ", "codeExist": 1,
            })

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("LOGIN", Classification.LOGIN),
            ("password_reset", Classification.PASSWORD_RESET),
            ("Password Reset", Classification.PASSWORD_RESET),
            ("other", Classification.OTHER),
        ],
    )
    def test_classification_coercion(self, label, expected):
        result = ExtractionResult.model_validate({
            "title": "a@b.c", "code": "1", "topic": "x", "codeExist": 1,
            "classification": label,
        })
        assert result.classification == expected

    def test_unknown_classification_is_rejected(self):
        with pytest.raises(ValidationError):
            ExtractionResult.model_validate({
                "title": "a@b.c", "code": "1", "topic": "x", "codeExist": 1,
                "classification": "something-else",
            })

    def test_enum_classification_is_kept(self):
        result = ExtractionResult(
            code_exists=True,
            sender_address="a@b.c",
            code="047422",
            topic="password reset",
            classification=Classification.PASSWORD_RESET,
        )
        assert result.classification == Classification.PASSWORD_RESET
        assert result.requires_gate

    def test_dump_and_revalidate_keeps_password_reset(self):
        original = ExtractionResult.model_validate({
            "title": "a@b.c", "code": "1", "topic": "x", "codeExist": 1,
            "classification": "PASSWORD_RESET",
        })
        for dumped in (original.model_dump(), original.model_dump(by_alias=True)):
            again = ExtractionResult.model_validate(dumped)
            assert again.classification == Classification.PASSWORD_RESET
            assert again.requires_gate

    def test_requires_gate_only_for_password_reset(self):
        base = {"title": "a@b.c", "code": "1", "topic": "x", "codeExist": 1}
        reset = ExtractionResult.model_validate({**base, "classification": "PASSWORD_RESET"})
        login = ExtractionResult.model_validate({**base, "classification": "LOGIN"})
        assert reset.requires_gate
        assert not login.requires_gate
