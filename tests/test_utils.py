"""Utility function tests."""

import pytest

from piawg.utils import (
    read_properties_file, read_region_ids, parse_index_list, prompt_indices, format_enumerated,
)


class TestPropertiesFiles:
    """credentials.properties and regions.properties."""

    def test_read_properties(self, tmp_path):
        path = tmp_path / "credentials.properties"
        path.write_text("# PIA account\nPIA_USER=p1234567\n\nPIA_PASS = \"s3cret=\"\n")

        assert read_properties_file(path) == {"PIA_USER": "p1234567", "PIA_PASS": "s3cret="}

    def test_missing_properties_file(self, tmp_path):
        assert read_properties_file(tmp_path / "missing.properties") == {}

    def test_read_region_ids(self, tmp_path):
        path = tmp_path / "regions.properties"
        path.write_text("swiss\nde_berlin  nl_amsterdam # fast ones\n# uk_london\nswiss\n")

        assert read_region_ids(path) == ["swiss", "de_berlin", "nl_amsterdam"]

    def test_missing_regions_file(self, tmp_path):
        assert read_region_ids(tmp_path / "regions.properties") == []


class TestIndexSelection:
    """Parsing of operator index input."""

    @pytest.mark.parametrize("text,expected", [
        ("0", [0]),
        ("1,3", [1, 3]),
        (" 0 2  5 ", [0, 2, 5]),
        ("2, 4", [2, 4]),
    ])
    def test_parse(self, text, expected):
        assert parse_index_list(text) == expected

    def test_all(self):
        assert parse_index_list("all", 3) == [0, 1, 2]

    @pytest.mark.parametrize("text", ["", "a", "1,-2", "1.5"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_index_list(text)

    def test_prompt_indices(self):
        assert prompt_indices("Select: ", 4, input_func=lambda prompt: "3,1") == [3, 1]

    def test_format_enumerated(self):
        assert format_enumerated(["Switzerland (swiss)", "DE Berlin (de_berlin)"]) == [
            "0) Switzerland (swiss)",
            "1) DE Berlin (de_berlin)",
        ]
