"""Closed set of plan features.

Plans store features as a JSON map. Parsing goes through ``FeatureSet`` so an
unknown key is rejected instead of silently granting nothing.
"""

from collections.abc import Iterator, Mapping
from enum import Enum

from taskmaster.billing.exceptions import UnknownFeatureError


class Feature(str, Enum):
    """Features a plan can grant."""

    TEAM = "team"
    LABELS = "labels"
    ATTACHMENTS = "attachments"
    API_ACCESS = "api_access"
    PRIORITY_SUPPORT = "priority_support"


class FeatureSet(Mapping[Feature, bool]):
    """Immutable Feature -> bool mapping. Features not listed are disabled."""

    __slots__ = ("_flags",)

    def __init__(self, enabled: Mapping[Feature, bool] | None = None) -> None:
        flags = {feature: False for feature in Feature}
        for feature, value in (enabled or {}).items():
            flags[Feature(feature)] = bool(value)
        self._flags = flags

    @classmethod
    def from_json(cls, raw: Mapping[str, object] | None) -> "FeatureSet":
        """Parse a stored feature map, rejecting keys outside ``Feature``."""
        parsed: dict[Feature, bool] = {}
        for key, value in (raw or {}).items():
            try:
                feature = Feature(key)
            except ValueError:
                raise UnknownFeatureError(f"Unknown feature flag: {key!r}") from None
            if not isinstance(value, bool):
                raise UnknownFeatureError(f"Feature flag {key!r} must be a boolean, got {value!r}")
            parsed[feature] = value
        return cls(parsed)

    def to_json(self) -> dict[str, bool]:
        return {feature.value: value for feature, value in self._flags.items()}

    def enabled(self) -> frozenset[Feature]:
        return frozenset(feature for feature, value in self._flags.items() if value)

    def __getitem__(self, feature: Feature) -> bool:
        return self._flags[Feature(feature)]

    def __iter__(self) -> Iterator[Feature]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def __repr__(self) -> str:
        names = ", ".join(sorted(f.value for f in self.enabled()))
        return f"FeatureSet({names})"
