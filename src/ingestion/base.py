"""
Base classes for follow-graph ingestion
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from core.entities import FollowedAccount
from core.errors import ValidationError


def validate_identity_id(identity_id) -> int:
    """
    Return the identity ID if it is a positive integer, else raise ValidationError.
    """
    if isinstance(identity_id, bool) or not isinstance(identity_id, int):
        raise ValidationError(f"Identity ID must be a positive integer, got {identity_id!r}")
    if identity_id <= 0:
        raise ValidationError(f"Identity ID must be a positive integer, got {identity_id}")
    return identity_id


class FollowGraphSource(ABC):
    """
    Base interface for follow-graph providers.
    """

    @abstractmethod
    async def fetch_all_following(
        self,
        identity_id: int,
        timeout: Optional[float] = None,
    ) -> List[FollowedAccount]:
        """
        Fetch every account followed by identity_id, in provider order.
        Raises ProviderError (or a subclass) when the list cannot be completed.
        """
        raise NotImplementedError
