"""Tests for FederatedAuthListener - provider sign-in observer."""

from webclient.federated import FederatedAuthListener, FederatedPrincipal

ALICE = FederatedPrincipal(uid="fb-alice", email="alice@example.com")


class TestSubscribe:

    def test_not_called_before_first_report(self):
        listener = FederatedAuthListener()
        seen = []

        listener.subscribe(seen.append)

        assert seen == []
        assert listener.settled is False

    def test_late_subscriber_gets_current(self):
        listener = FederatedAuthListener()
        listener.emit(ALICE)
        seen = []

        listener.subscribe(seen.append)

        assert seen == [ALICE]

    def test_sign_out_reported_as_none(self):
        listener = FederatedAuthListener()
        seen = []
        listener.subscribe(seen.append)

        listener.emit(ALICE)
        listener.emit(None)

        assert seen == [ALICE, None]
        assert listener.principal is None
        assert listener.settled is True


class TestCancel:

    def test_cancelled_subscriber_not_called(self):
        listener = FederatedAuthListener()
        seen = []
        subscription = listener.subscribe(seen.append)

        subscription.cancel()
        listener.emit(ALICE)

        assert seen == []
        assert subscription.cancelled

    def test_cancel_is_idempotent(self):
        subscription = FederatedAuthListener().subscribe(lambda principal: None)

        subscription.cancel()
        subscription.cancel()

    def test_failing_subscriber_does_not_block_others(self):
        listener = FederatedAuthListener()
        seen = []

        def broken(principal):
            raise RuntimeError("boom")

        listener.subscribe(broken)
        listener.subscribe(seen.append)

        listener.emit(ALICE)

        assert seen == [ALICE]
