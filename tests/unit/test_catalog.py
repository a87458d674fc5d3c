"""
Unit tests for the incumbent heuristic catalog.
"""

import json

import pytest
from pydantic import ValidationError

from tandem.catalog import (
    DEFAULT_CATALOG,
    IncumbentCatalog,
    PatternRule,
    ProviderSignature,
    load_catalog,
)


class TestPatternMatching:
    def test_case_insensitive_substring(self):
        rule = PatternRule(pattern="holder", confidence=0.5)

        assert rule.matches("NFT Holder")
        assert not rule.matches("member")

    def test_best_match_takes_highest_confidence(self):
        collabland = DEFAULT_CATALOG.provider("collabland")

        match = collabland.best_grant_match("nft-holder-gold")

        assert match.pattern == "nft-holder"
        assert match.confidence == 0.6

    def test_name_patterns(self):
        collabland = DEFAULT_CATALOG.provider("collabland")

        assert collabland.matches_name("Collab.Land")
        assert not collabland.matches_name("Carl-bot")

    def test_access_grant_names(self):
        assert DEFAULT_CATALOG.is_access_grant_name("Verified")
        assert not DEFAULT_CATALOG.is_access_grant_name("Moderator")

    def test_unknown_provider(self):
        assert DEFAULT_CATALOG.provider("vulcan") is None


class TestValidation:
    def test_confidence_out_of_range(self):
        with pytest.raises(ValidationError):
            PatternRule(pattern="holder", confidence=1.5)

    def test_duplicate_providers(self):
        signature = ProviderSignature(provider="collabland")

        with pytest.raises(ValidationError, match="unique"):
            IncumbentCatalog(version="1", providers=(signature, signature))

    def test_frozen(self):
        with pytest.raises(ValidationError):
            DEFAULT_CATALOG.version = "2"


class TestLoadCatalog:
    def test_loads_json(self, tmp_path):
        path = tmp_path / "incumbents.json"
        path.write_text(
            json.dumps(
                {
                    "version": "2025.2",
                    "providers": [
                        {
                            "provider": "vulcan",
                            "automation_ids": ["42"],
                            "name_patterns": ["vulcan"],
                            "channel_patterns": [{"pattern": "vulcan-verify", "confidence": 0.8}],
                            "grant_patterns": [{"pattern": "forged", "confidence": 0.5}],
                        }
                    ],
                }
            ),
            encoding="utf-8",
        )

        catalog = load_catalog(path)

        assert catalog.version == "2025.2"
        vulcan = catalog.provider("vulcan")
        assert vulcan.automation_ids == ("42",)
        assert vulcan.automation_id_confidence == 0.95
        assert vulcan.best_channel_match("#vulcan-verify").confidence == 0.8

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({"version": "", "providers": []}), encoding="utf-8")

        with pytest.raises(ValidationError):
            load_catalog(path)
