"""
Who is acting. Injected into services so nothing reads a global user.
"""

from abc import ABC, abstractmethod


class IdentityProvider(ABC):

    @abstractmethod
    def current_user_id(self) -> str:
        """ID stamped on everything the current user creates."""


class StaticIdentity(IdentityProvider):
    """Fixed user ID, typically from settings."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    def current_user_id(self) -> str:
        return self.user_id
