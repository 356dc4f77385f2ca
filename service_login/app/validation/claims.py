"""
Read-only view over validated ID token claims.
"""

from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

_CONSTRUCTION_TOKEN = object()


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


class DecodedClaims(Mapping[str, Any]):
    """Claims of an identity token that passed validation.

    Instances are only created by the validator. Typed accessors return
    ``None`` when a claim is absent or has an unexpected shape instead of
    raising, so callers can work against provider-specific JSON safely.
    """

    def __init__(self, claims: Mapping[str, Any], _token: object = None) -> None:
        if _token is not _CONSTRUCTION_TOKEN:
            raise TypeError("DecodedClaims are produced by IdentityTokenValidator")
        self._claims = _freeze(dict(claims))

    @classmethod
    def _from_validated(cls, claims: Mapping[str, Any]) -> "DecodedClaims":
        return cls(claims, _CONSTRUCTION_TOKEN)

    def __getitem__(self, name: str) -> Any:
        return self._claims[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def __repr__(self) -> str:
        return f"DecodedClaims(sub={self.get_string('sub')!r}, keys={sorted(self._claims)!r})"

    def get_string(self, name: str) -> Optional[str]:
        value = self._claims.get(name)
        return value if isinstance(value, str) else None

    def get_number(self, name: str) -> Optional[float]:
        value = self._claims.get(name)
        # bool is an int subclass but never a valid numeric claim
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    def get_string_list(self, name: str) -> Optional[List[str]]:
        """Return a list claim, keeping only its string members.

        A single string is treated as a one-element list (``aud`` may be
        either form).
        """
        value = self._claims.get(name)
        if isinstance(value, str):
            return [value]
        if isinstance(value, tuple):
            return [item for item in value if isinstance(item, str)]
        return None

    def get_mapping(self, name: str) -> Optional[Mapping[str, Any]]:
        value = self._claims.get(name)
        return value if isinstance(value, Mapping) else None

    def get_nested_roles(self, *path: str) -> Optional[List[str]]:
        """Follow ``path`` through nested objects and return its ``roles`` list.

        ``get_nested_roles("realm_access")`` reads ``realm_access.roles``;
        ``get_nested_roles("resource_access", "my-client")`` reads
        ``resource_access.my-client.roles``.
        """
        node: Any = self._claims
        for segment in path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(segment)
        if not isinstance(node, Mapping):
            return None
        roles = node.get("roles")
        if not isinstance(roles, tuple):
            return None
        return [role for role in roles if isinstance(role, str)]

    def to_dict(self) -> Dict[str, Any]:
        """Return a plain mutable deep copy of the claims."""
        def thaw(value: Any) -> Any:
            if isinstance(value, Mapping):
                return {key: thaw(item) for key, item in value.items()}
            if isinstance(value, tuple):
                return [thaw(item) for item in value]
            return value

        return thaw(self._claims)
