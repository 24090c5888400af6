"""
Contact Profiles
================
Resolves where a caller's tokens are sent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import UnknownContact


@dataclass(frozen=True)
class ContactProfile:
    """Registered contact address and factor of an identity."""
    contact: str
    factor: str

    @classmethod
    def from_mapping(cls, data: Any) -> "ContactProfile":
        """
        Build a profile from ``{"contact": str, "factor": str}``.

        Raises:
            UnknownContact: If the shape is missing or malformed
        """
        if not isinstance(data, Mapping):
            raise UnknownContact("Contact profile missing")
        if set(data) != {"contact", "factor"}:
            raise UnknownContact("Contact profile malformed")

        contact, factor = data["contact"], data["factor"]
        if not isinstance(contact, str) or not isinstance(factor, str):
            raise UnknownContact("Contact profile malformed")
        return cls(contact=contact, factor=factor)

    def to_dict(self) -> Dict[str, str]:
        return {"contact": self.contact, "factor": self.factor}


class ContactProfileResolver(ABC):
    """Looks up the contact profile of an identity."""

    @abstractmethod
    async def resolve(self, identity: str) -> ContactProfile:
        """
        Resolve the profile of ``identity``.

        Raises:
            UnknownContact: If no well-formed profile exists
        """
        pass


class InMemoryProfileResolver(ContactProfileResolver):
    """
    Resolver over in-memory user documents.

    Each user document holds its profile under ``namespace``, e.g.
    ``{"TokenAffirm": {"contact": "a@example.com", "factor": "email"}}``.
    """

    def __init__(
        self,
        users: Optional[Dict[str, Mapping[str, Any]]] = None,
        namespace: str = "TokenAffirm",
    ):
        self.namespace = namespace
        self._users: Dict[str, Mapping[str, Any]] = dict(users or {})

    def set_profile(self, identity: str, contact: str, factor: str) -> None:
        user = dict(self._users.get(identity, {}))
        user[self.namespace] = {"contact": contact, "factor": factor}
        self._users[identity] = user

    async def resolve(self, identity: str) -> ContactProfile:
        user = self._users.get(identity)
        if user is None:
            raise UnknownContact("Contact profile missing")
        return ContactProfile.from_mapping(user.get(self.namespace))
