"""Perfect negotiation coordinator.

Both call participants may create offers at any time (initial connect, ICE
restart, renegotiation). When two offers cross on the wire, one side must
yield. Roles are assigned deterministically from the user ids so that both
sides agree without extra messages:

    - polite peer: on collision, rolls back its own pending offer and accepts
      the remote one
    - impolite peer: on collision, ignores the remote offer and waits for the
      answer to its own

The coordinator only holds the decision state. Applying descriptions is the
job of PeerConnectionManager.

Examples:
    >>> coordinator = NegotiationCoordinator("user-b")
    >>> coordinator.assign_remote("user-a")
    True
    >>> coordinator.on_remote_offer("have-local-offer")
    <OfferDecision.ROLLBACK_AND_ACCEPT: 'rollback_and_accept'>
"""

import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class OfferDecision(str, Enum):
    """What to do with an incoming offer."""

    ACCEPT = "accept"
    ROLLBACK_AND_ACCEPT = "rollback_and_accept"
    IGNORE = "ignore"


def _collation_key(user_id: str) -> tuple:
    # localeCompare order for letters, digits and hyphens: case-insensitive first,
    # then lowercase before uppercase
    return user_id.casefold(), user_id.swapcase()


def is_polite(local_id: str, remote_id: str) -> bool:
    """Return True when the local peer takes the polite role.

    The peer with the higher id is polite. Ids are ordered the way a browser
    peer's ``localeCompare`` orders ids made of ASCII letters, digits and
    hyphens (``"a" < "B"``, ``"a" < "A"``), so a Python client and a browser
    client pick opposite roles. For two distinct ids exactly one side gets
    ``True``.
    """
    return _collation_key(local_id) > _collation_key(remote_id)


class NegotiationCoordinator:
    """Role assignment and collision resolution for one call.

    Attributes:
        local_id (str): this participant's user id
        remote_peer_id (Optional[str]): the other participant, once known
        polite (bool): whether this side yields on collisions
        making_offer (bool): True while an offer is being created/applied
        ignore_offer (bool): result of the last collision check
    """

    def __init__(self, local_id: str):
        self.local_id = local_id
        self.remote_peer_id: Optional[str] = None
        self.polite = False
        self.making_offer = False
        self.ignore_offer = False

    def assign_remote(self, remote_id: str) -> bool:
        """Remember the remote peer announced by the relay and compute the role.

        Returns:
            bool: the polite flag
        """
        self.remote_peer_id = remote_id
        self.polite = is_polite(self.local_id, remote_id)
        logger.info(
            f"[Negotiation] remote={remote_id} polite={self.polite}"
        )
        return self.polite

    def adopt_sender(self, sender_id: Optional[str]) -> None:
        """Take the sender of an incoming offer as the remote peer.

        The role is only computed when it has not been set to polite yet,
        so a peer that already learnt it is polite keeps that role.
        """
        if not sender_id:
            return
        self.remote_peer_id = sender_id
        if not self.polite:
            self.polite = is_polite(self.local_id, sender_id)

    @asynccontextmanager
    async def offering(self):
        """Mark offer creation in progress.

        Examples:
            >>> async with coordinator.offering():
            ...     offer = await manager.create_offer()
        """
        self.making_offer = True
        try:
            yield
        finally:
            self.making_offer = False

    def on_remote_offer(self, signaling_state: str) -> OfferDecision:
        """Decide how to treat an incoming offer.

        Args:
            signaling_state: current signaling state of the local connection

        Returns:
            OfferDecision: IGNORE when impolite and colliding,
            ROLLBACK_AND_ACCEPT when polite and colliding, ACCEPT otherwise
        """
        offer_collision = self.making_offer or signaling_state != "stable"
        self.ignore_offer = not self.polite and offer_collision

        if self.ignore_offer:
            logger.warning("[Negotiation] offer collision (impolite), ignoring remote offer")
            return OfferDecision.IGNORE
        if offer_collision:
            logger.info("[Negotiation] offer collision (polite), rolling back local offer")
            return OfferDecision.ROLLBACK_AND_ACCEPT
        return OfferDecision.ACCEPT

    def reset_remote(self) -> None:
        """Forget the remote peer after it left the room."""
        self.remote_peer_id = None
        self.ignore_offer = False
