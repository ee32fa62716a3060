"""Tests for TokenLedger: mint, single-use redeem, expiry, claim records."""
import threading
from itertools import count

import pytest

from fileclaim.claims.errors import TokenInvalid
from fileclaim.claims.ledger import TokenLedger, new_token
from fileclaim.storage.kv import InMemoryKeyValueStore


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class InterleavingStore(InMemoryKeyValueStore):
    """Runs on_get once, right after the next get() has read its value."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.on_get = None

    def get(self, key):
        value = super().get(key)
        hook, self.on_get = self.on_get, None
        if hook is not None:
            hook()
        return value


def _sequential_tokens():
    counter = count(1)
    return lambda: f"tok{next(counter):04d}"


def _ledger(clock=None, **kv_kwargs):
    clock = clock or FakeClock()
    kv = InMemoryKeyValueStore(clock=clock, **kv_kwargs)
    return TokenLedger(kv, clock=clock, token_factory=_sequential_tokens()), kv, clock


class TestNewToken:
    def test_token_is_long_and_urlsafe(self):
        token = new_token()
        assert len(token) >= 43
        assert all(c.isalnum() or c in "-_" for c in token)

    def test_tokens_unique(self):
        assert len({new_token() for _ in range(200)}) == 200


class TestMint:
    def test_mint_writes_token_and_claim(self):
        ledger, kv, clock = _ledger()
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)

        assert claim.token == "tok0001"
        assert claim.expires_at == clock.now + 3600
        assert kv.get("token:tok0001") is not None
        assert ledger.lookup_claim("TX1") == claim

    def test_claim_expires_with_token(self):
        ledger, _, clock = _ledger()
        ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)
        clock.advance(3600)
        assert ledger.lookup_claim("TX1") is None

    def test_concurrent_claim_returns_first_token(self):
        ledger, kv, _ = _ledger()
        first = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)
        second = ledger.mint("ebooks/b.pdf", "b", "TX1", 3600)

        assert second == first
        # the losing token was discarded
        assert kv.get("token:tok0002") is None
        assert kv.get("token:tok0001") is not None

    def test_unreadable_claim_record_is_ignored(self):
        ledger, kv, _ = _ledger()
        kv.put("claim:TX1", "{not json")
        assert ledger.lookup_claim("TX1") is None

    def test_purchase_marker(self):
        ledger, _, clock = _ledger()
        assert ledger.purchase_spent("TX1") is False
        ledger.mark_purchase("TX1", 60)
        assert ledger.purchase_spent("TX1") is True
        clock.advance(60)
        assert ledger.purchase_spent("TX1") is False


class TestRedeem:
    def test_redeem_once(self):
        ledger, _, _ = _ledger()
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)

        record = ledger.redeem(claim.token)
        assert record.path == "ebooks/a.pdf"
        assert record.item_id == "a"
        assert record.transaction_ref == "TX1"

        with pytest.raises(TokenInvalid):
            ledger.redeem(claim.token)

    def test_unknown_and_empty_token(self):
        ledger, _, _ = _ledger()
        with pytest.raises(TokenInvalid):
            ledger.redeem("nope")
        with pytest.raises(TokenInvalid):
            ledger.redeem("")

    def test_expired_token(self):
        ledger, _, clock = _ledger()
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)
        clock.advance(3599)
        ledger.peek(claim.token)
        clock.advance(1)
        with pytest.raises(TokenInvalid):
            ledger.redeem(claim.token)

    def test_expired_record_rejected_even_if_store_kept_it(self):
        clock = FakeClock()
        ledger, kv, _ = _ledger(clock)
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)
        # store without TTL support: key still there after expiry
        kv.put("token:" + claim.token, kv.get("token:" + claim.token))
        clock.advance(7200)
        with pytest.raises(TokenInvalid):
            ledger.redeem(claim.token)

    def test_record_for_other_token_rejected(self):
        ledger, kv, _ = _ledger()
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)
        kv.put("token:forged", kv.get("token:" + claim.token))
        with pytest.raises(TokenInvalid):
            ledger.redeem("forged")

    def test_corrupt_record_rejected(self):
        ledger, kv, _ = _ledger()
        kv.put("token:bad", "{")
        with pytest.raises(TokenInvalid):
            ledger.peek("bad")

    def test_peek_does_not_consume(self):
        ledger, _, _ = _ledger()
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)
        ledger.peek(claim.token)
        ledger.peek(claim.token)
        assert ledger.redeem(claim.token).item_id == "a"


class TestRedeemRace:
    def test_non_atomic_store_allows_double_redeem_in_window(self):
        clock = FakeClock()
        kv = InterleavingStore(clock=clock, atomic_take=False)
        ledger = TokenLedger(kv, clock=clock, token_factory=_sequential_tokens())
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)

        inner = []
        kv.on_get = lambda: inner.append(ledger.redeem(claim.token))
        outer = ledger.redeem(claim.token)

        # both redemptions read the record before either deleted it
        assert outer.item_id == "a"
        assert len(inner) == 1 and inner[0].item_id == "a"

    def test_atomic_take_single_winner(self):
        ledger, _, _ = _ledger()
        claim = ledger.mint("ebooks/a.pdf", "a", "TX1", 3600)

        barrier = threading.Barrier(16)
        results = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                ledger.redeem(claim.token)
                outcome = "ok"
            except TokenInvalid:
                outcome = "invalid"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert results.count("invalid") == 15
