"""Perfect negotiation role and collision tests."""

import pytest

from telehealth.webrtc import NegotiationCoordinator, OfferDecision, is_polite


class TestPoliteRole:

    def test_higher_id_is_polite(self):
        assert is_polite("user-b", "user-a") is True
        assert is_polite("user-a", "user-b") is False

    @pytest.mark.parametrize("local_id, remote_id, polite", [
        ("a", "B", False),
        ("B", "a", True),
        ("A", "a", True),
        ("Doctor-1", "patient-1", False),
    ])
    def test_mixed_case_follows_browser_order(self, local_id, remote_id, polite):
        assert is_polite(local_id, remote_id) is polite

    @pytest.mark.parametrize("a, b", [
        ("doctor-1", "patient-1"),
        ("abc", "abd"),
        ("user-10", "user-9"),
        ("Alice", "alice"),
    ])
    def test_exactly_one_side_is_polite(self, a, b):
        assert is_polite(a, b) != is_polite(b, a)

    def test_assign_remote_sets_role(self):
        coordinator = NegotiationCoordinator("patient-1")
        assert coordinator.assign_remote("doctor-1") is True
        assert coordinator.remote_peer_id == "doctor-1"
        assert coordinator.polite is True

    def test_adopt_sender_keeps_polite_role(self):
        coordinator = NegotiationCoordinator("b")
        coordinator.assign_remote("a")
        coordinator.adopt_sender("c")
        assert coordinator.remote_peer_id == "c"
        assert coordinator.polite is True

    def test_adopt_sender_computes_role_when_unknown(self):
        coordinator = NegotiationCoordinator("z")
        coordinator.adopt_sender("a")
        assert coordinator.remote_peer_id == "a"
        assert coordinator.polite is True

    def test_adopt_sender_ignores_missing_id(self):
        coordinator = NegotiationCoordinator("a")
        coordinator.adopt_sender(None)
        assert coordinator.remote_peer_id is None


class TestOfferDecision:

    def test_stable_offer_is_accepted(self):
        coordinator = NegotiationCoordinator("a")
        coordinator.assign_remote("b")
        assert coordinator.on_remote_offer("stable") == OfferDecision.ACCEPT
        assert coordinator.ignore_offer is False

    def test_impolite_ignores_collision(self):
        coordinator = NegotiationCoordinator("a")
        coordinator.assign_remote("b")
        assert coordinator.on_remote_offer("have-local-offer") == OfferDecision.IGNORE
        assert coordinator.ignore_offer is True

    def test_polite_rolls_back_on_collision(self):
        coordinator = NegotiationCoordinator("b")
        coordinator.assign_remote("a")
        assert coordinator.on_remote_offer("have-local-offer") == OfferDecision.ROLLBACK_AND_ACCEPT

    async def test_making_offer_counts_as_collision(self):
        coordinator = NegotiationCoordinator("a")
        coordinator.assign_remote("b")
        async with coordinator.offering():
            assert coordinator.making_offer is True
            assert coordinator.on_remote_offer("stable") == OfferDecision.IGNORE
        assert coordinator.making_offer is False

    async def test_offering_resets_flag_on_error(self):
        coordinator = NegotiationCoordinator("a")
        with pytest.raises(RuntimeError):
            async with coordinator.offering():
                raise RuntimeError("createOffer failed")
        assert coordinator.making_offer is False

    def test_reset_remote(self):
        coordinator = NegotiationCoordinator("a")
        coordinator.assign_remote("b")
        coordinator.on_remote_offer("have-local-offer")
        coordinator.reset_remote()
        assert coordinator.remote_peer_id is None
        assert coordinator.ignore_offer is False
