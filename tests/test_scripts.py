"""Tests for the operator scripts and the example files they read."""

from pathlib import Path

import pytest

from scripts.seed_skill_mappings import read_mappings
from talentmatch.config.exceptions import ConfigurationError
from verify_config import verify_config_structure

REPO_ROOT = Path(__file__).parent.parent


class TestReadMappings:
    def test_example_file(self):
        mappings = read_mappings(REPO_ROOT / "config" / "skill_mappings.example.yaml")

        assert len(mappings) == 4
        quarterback = mappings[0]
        assert (quarterback.sport, quarterback.position) == ("Football", "Quarterback")
        assert quarterback.transfer_strength == 0.9
        assert mappings[1].position is None

    def test_missing_mappings_list(self, tmp_path):
        path = tmp_path / "mappings.yaml"
        path.write_text("sport: Football\n")

        with pytest.raises(ConfigurationError):
            read_mappings(path)

    def test_invalid_rows_are_all_reported(self, tmp_path):
        path = tmp_path / "mappings.yaml"
        path.write_text(
            "mappings:\n"
            "  - sport: Football\n"
            "    professional_skill: Teamwork\n"
            "    transfer_strength: 1.5\n"
            "  - sport: ''\n"
            "    professional_skill: Discipline\n"
        )

        with pytest.raises(ConfigurationError) as exc_info:
            read_mappings(path)

        errors = exc_info.value.errors
        assert any(e.startswith("mappings[0].transfer_strength") for e in errors)
        assert any(e.startswith("mappings[1].sport") for e in errors)

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            read_mappings(tmp_path / "missing.yaml")


class TestVerifyConfig:
    def test_example_config_is_valid(self):
        assert verify_config_structure(REPO_ROOT / "config.example.yaml") is True

    def test_unknown_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sources:\n  - name: x\n")

        assert verify_config_structure(path) is False
