"""
Matching profile for reconciliation scoring.

The duplicate finder and the exact-match auto linker read their thresholds and
boost constants from a :class:`MatchingProfile`. The built-in defaults mirror
the values operators have tuned against real Vista extracts; deployments can
override any of them by pointing ``RECON_MATCHING_PROFILE_PATH`` at a JSON or
YAML file, for example::

    location_boost: 0.05
    strong_field_floor: 0.75
    tiers:
      high: 0.85

Unknown keys are rejected so typos surface at startup instead of silently
falling back to defaults.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, MutableMapping

import yaml


@dataclass(frozen=True)
class ConfidenceTiers:
    """Lower bounds for the triage buckets shown next to duplicate lists."""

    high: float = 0.8
    medium: float = 0.6
    low: float = 0.5

    def classify(self, score: float | None) -> str | None:
        if score is None:
            return None
        if score >= self.high:
            return "high"
        if score >= self.medium:
            return "medium"
        if score >= self.low:
            return "low"
        return None


@dataclass(frozen=True)
class MatchingProfile:
    """
    Tunable constants used while scoring candidate matches.

    Attributes:
        location_boost: Added to a name score when the secondary location
            field (city) matches exactly; the total is capped at 1.0.
        strong_field_floor: Minimum score granted when a strong discriminating
            field (last name) matches exactly.
        exact_key_score: Score assigned when natural keys match exactly.
        default_min_similarity: Threshold used when callers pass none.
        max_candidates: Number of candidates retained per external record.
        exact_link_threshold: Minimum rounded score for bulk exact linking.
        score_precision: Decimal places kept on reported scores.
        tiers: Confidence triage boundaries.
    """

    location_boost: float = 0.1
    strong_field_floor: float = 0.7
    exact_key_score: float = 1.0
    default_min_similarity: float = 0.5
    max_candidates: int = 5
    exact_link_threshold: float = 0.995
    score_precision: int = 2
    tiers: ConfidenceTiers = ConfidenceTiers()


DEFAULT_PROFILE = MatchingProfile()

_FLOAT_KEYS = (
    "location_boost",
    "strong_field_floor",
    "exact_key_score",
    "default_min_similarity",
    "exact_link_threshold",
)
_INT_KEYS = ("max_candidates", "score_precision")


class MatchingConfigError(RuntimeError):
    """Raised when a matching profile override cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise MatchingConfigError(f"Matching profile file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise MatchingConfigError(f"Unable to read matching profile file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise MatchingConfigError(f"Matching profile file {path} is not valid: {exc}") from exc

    if not isinstance(data, Mapping):
        raise MatchingConfigError("Matching profile must be a JSON/YAML object.")
    return dict(data)


def _coerce_unit_float(raw: object, name: str) -> float:
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise MatchingConfigError(f"{name} must be a number, got {raw!r}.") from exc
    if value < 0.0 or value > 1.0:
        raise MatchingConfigError(f"{name} must be between 0 and 1, got {value}.")
    return value


def _coerce_tiers(raw: object) -> ConfidenceTiers:
    if raw is None:
        return DEFAULT_PROFILE.tiers
    if not isinstance(raw, Mapping):
        raise MatchingConfigError("tiers must be a mapping of high/medium/low bounds.")
    unknown = sorted(set(raw) - {"high", "medium", "low"})
    if unknown:
        raise MatchingConfigError(f"Unknown tier names: {', '.join(unknown)}.")
    tiers = replace(
        DEFAULT_PROFILE.tiers,
        **{name: _coerce_unit_float(value, f"tiers.{name}") for name, value in raw.items()},
    )
    if not tiers.high >= tiers.medium >= tiers.low:
        raise MatchingConfigError("Tier bounds must satisfy high >= medium >= low.")
    return tiers


def coerce_profile(raw: Mapping[str, object]) -> MatchingProfile:
    """Build a profile from a mapping, validating every override."""

    known = set(_FLOAT_KEYS) | set(_INT_KEYS) | {"tiers"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise MatchingConfigError(f"Unknown matching profile keys: {', '.join(unknown)}.")

    overrides: dict[str, object] = {}
    for key in _FLOAT_KEYS:
        if key in raw:
            overrides[key] = _coerce_unit_float(raw[key], key)
    for key in _INT_KEYS:
        if key in raw:
            try:
                value = int(raw[key])  # type: ignore[arg-type]
            except (TypeError, ValueError) as exc:
                raise MatchingConfigError(f"{key} must be an integer.") from exc
            if value < 1 and key == "max_candidates":
                raise MatchingConfigError("max_candidates must be at least 1.")
            if value < 0:
                raise MatchingConfigError(f"{key} must not be negative.")
            overrides[key] = value
    if "tiers" in raw:
        overrides["tiers"] = _coerce_tiers(raw["tiers"])
    return replace(DEFAULT_PROFILE, **overrides)


def load_profile(env: Mapping[str, str] | None = None) -> MatchingProfile:
    """
    Load the active matching profile.

    If ``RECON_MATCHING_PROFILE_PATH`` is set, its JSON/YAML content overrides
    the defaults. Otherwise the built-in profile is returned.
    """

    env_map = env or {}
    override_path = env_map.get("RECON_MATCHING_PROFILE_PATH")
    if not override_path:
        return DEFAULT_PROFILE
    return coerce_profile(_load_override(Path(override_path)))


__all__ = [
    "ConfidenceTiers",
    "MatchingConfigError",
    "MatchingProfile",
    "DEFAULT_PROFILE",
    "coerce_profile",
    "load_profile",
]
