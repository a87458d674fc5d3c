"""
Versioned heuristic catalog for incumbent detection.

The catalog lists known incumbent providers with the automation ids,
name patterns, channel patterns and grant patterns that reveal them, each
with its own confidence weight. Detection code iterates over whatever the
catalog contains, so supporting a new incumbent is a data change:

    >>> catalog = load_catalog("incumbents.json")
    >>> profiler = IncumbentProfiler(..., catalog=catalog)

Patterns are case-insensitive substring matches, the same way operators
name channels and roles by hand ("#verify-here", "NFT Holder").
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PatternRule(BaseModel):
    """A name pattern with the confidence a match contributes."""

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)

    def matches(self, name: str) -> bool:
        return self.pattern.lower() in name.lower()


class ProviderSignature(BaseModel):
    """
    Everything that identifies one incumbent provider.

    Attributes:
        provider: Stable provider id stored on the profile.
        automation_ids: Known platform ids of the provider's bot.
        automation_id_confidence: Confidence of an exact id match.
        name_patterns: Substrings of the bot's display name.
        name_confidence: Confidence of an automation name match.
        channel_patterns: Verification-flow channel names.
        grant_patterns: Access-tier grant names.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = Field(min_length=1)
    automation_ids: tuple[str, ...] = ()
    automation_id_confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    name_patterns: tuple[str, ...] = ()
    name_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    channel_patterns: tuple[PatternRule, ...] = ()
    grant_patterns: tuple[PatternRule, ...] = ()

    def matches_name(self, name: str) -> bool:
        lowered = name.lower()
        return any(p.lower() in lowered for p in self.name_patterns)

    def best_channel_match(self, name: str) -> PatternRule | None:
        return _best(self.channel_patterns, name)

    def best_grant_match(self, name: str) -> PatternRule | None:
        return _best(self.grant_patterns, name)


class IncumbentCatalog(BaseModel):
    """
    The full heuristic table.

    Attributes:
        version: Catalog version recorded on every profile it produced.
        providers: Known providers.
        generic_keywords: Automation-name keywords that suggest gating
            behavior when no provider matches.
        generic_confidence: Confidence of a generic keyword match.
        likely_access_confidence: Suspect-grant score for grants matching
            any access-tier pattern.
        maybe_access_confidence: Suspect-grant score for other grants.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(min_length=1)
    providers: tuple[ProviderSignature, ...]
    generic_keywords: tuple[str, ...] = ("verify", "token", "gate", "holder")
    generic_confidence: float = Field(default=0.25, ge=0.0, le=1.0)
    likely_access_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    maybe_access_confidence: float = Field(default=0.3, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _unique_providers(self) -> IncumbentCatalog:
        names = [p.provider for p in self.providers]
        if len(set(names)) != len(names):
            raise ValueError("provider ids must be unique within a catalog")
        return self

    def provider(self, provider_id: str) -> ProviderSignature | None:
        for signature in self.providers:
            if signature.provider == provider_id:
                return signature
        return None

    def is_access_grant_name(self, name: str) -> bool:
        """True if name matches any provider's access-tier pattern."""
        return any(p.best_grant_match(name) is not None for p in self.providers)


def _best(rules: tuple[PatternRule, ...], name: str) -> PatternRule | None:
    matches = [rule for rule in rules if rule.matches(name)]
    if not matches:
        return None
    return max(matches, key=lambda rule: rule.confidence)


def _rules(confidence: float, *patterns: str) -> tuple[PatternRule, ...]:
    return tuple(PatternRule(pattern=p, confidence=confidence) for p in patterns)


DEFAULT_CATALOG = IncumbentCatalog(
    version="2024.1",
    providers=(
        ProviderSignature(
            provider="collabland",
            automation_ids=("704521096837464076",),
            name_patterns=("collab.land", "collabland"),
            channel_patterns=(
                *_rules(0.8, "collabland-join", "collabland-config", "collab-land"),
                *_rules(0.7, "verify", "verification"),
            ),
            grant_patterns=(
                *_rules(0.6, "nft-holder", "token-holder"),
                *_rules(0.5, "holder", "verified", "whale"),
                *_rules(0.3, "member"),
            ),
        ),
        ProviderSignature(
            provider="matrica",
            name_patterns=("matrica",),
            channel_patterns=(
                *_rules(0.8, "matrica-verify", "matrica-join"),
                *_rules(0.75, "matrica"),
            ),
            grant_patterns=(
                *_rules(0.6, "matrica-verified"),
                *_rules(0.5, "verified", "holder"),
            ),
        ),
        ProviderSignature(
            provider="guild.xyz",
            name_patterns=("guild.xyz", "guild"),
            channel_patterns=(
                *_rules(0.8, "guild-join", "guild-verify"),
                *_rules(0.7, "guild"),
            ),
            grant_patterns=(
                *_rules(0.6, "guild-member", "guild-verified"),
                *_rules(0.5, "verified"),
            ),
        ),
    ),
)


def load_catalog(path: str | Path) -> IncumbentCatalog:
    """
    Load and validate a catalog from a JSON file.

    Raises:
        pydantic.ValidationError: If the file does not describe a valid catalog.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return IncumbentCatalog.model_validate(data)


__all__ = [
    "PatternRule",
    "ProviderSignature",
    "IncumbentCatalog",
    "DEFAULT_CATALOG",
    "load_catalog",
]
