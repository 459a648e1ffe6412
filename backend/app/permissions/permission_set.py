from collections.abc import Iterable, Iterator, Mapping
from typing import Optional

from .constants import Permission


class PermissionSet(Mapping):
    """Immutable, total mapping of every `Permission` to a bool.

    Only the granted keys are stored; every other key reads as False, so a
    partial set cannot exist.
    """

    __slots__ = ("_granted",)

    def __init__(self, granted: Iterable[Permission | str] = ()):
        self._granted = frozenset(Permission(p) for p in granted)

    @classmethod
    def all(cls) -> "PermissionSet":
        return cls(Permission)

    @classmethod
    def none(cls) -> "PermissionSet":
        return cls()

    @classmethod
    def from_dict(
        cls,
        values: Mapping[str, bool],
        defaults: Optional["PermissionSet"] = None,
    ) -> "PermissionSet":
        """
        Build a set from a key -> bool mapping such as a stored role row.

        Keys missing from `values` take their value from `defaults`
        (False when no defaults are given). Unknown keys are malformed input
        and raise ValueError.
        """
        unknown = [k for k in values if k not in Permission.__members__]
        if unknown:
            raise ValueError(f"Unknown permission keys: {', '.join(sorted(map(str, unknown)))}")

        granted = set(defaults.granted) if defaults is not None else set()
        for key, enabled in values.items():
            perm = Permission(key)
            if enabled:
                granted.add(perm)
            else:
                granted.discard(perm)
        return cls(granted)

    @property
    def granted(self) -> frozenset[Permission]:
        return self._granted

    def to_dict(self) -> dict[str, bool]:
        return {p.value: p in self._granted for p in Permission}

    def __getitem__(self, key: Permission | str) -> bool:
        try:
            perm = Permission(key)
        except ValueError:
            raise KeyError(key) from None
        return perm in self._granted

    def __iter__(self) -> Iterator[Permission]:
        return iter(Permission)

    def __len__(self) -> int:
        return len(Permission)

    def __or__(self, other: "PermissionSet") -> "PermissionSet":
        if not isinstance(other, PermissionSet):
            return NotImplemented
        return PermissionSet(self._granted | other._granted)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PermissionSet):
            return self._granted == other._granted
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash(self._granted)

    def __repr__(self) -> str:
        names = sorted(p.value for p in self._granted)
        return f"PermissionSet({names})"
