"""
tests/test_concurrency.py -- Concurrent requests against one file-backed store.

Threads are released together with a Barrier so the interesting statements
overlap as closely as the SQLite lock allows.
"""

from __future__ import annotations

import threading

import pytest

from auth.authenticators import TokenAuthenticator
from auth.errors import DuplicateEmail, Unauthenticated
from auth.gateway import AuthGateway
from auth.store import UserStore

PASSWORD = "secret123"


def _run_together(count: int, target) -> list:
    barrier = threading.Barrier(count)
    results: list = [None] * count

    def worker(index: int) -> None:
        barrier.wait()
        try:
            results[index] = target(index)
        except Exception as exc:  # collected for assertions
            results[index] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


class TestConcurrentRegistration:
    def test_same_email_registers_once(self, gateway: AuthGateway, store: UserStore) -> None:
        results = _run_together(
            2,
            lambda i: gateway.tokens.register(f"User {i}", "race@x.com", PASSWORD, PASSWORD, f"device-{i}"),
        )
        winners = [r for r in results if isinstance(r, tuple)]
        losers = [r for r in results if isinstance(r, DuplicateEmail)]
        assert len(winners) == 1
        assert len(losers) == 1
        user, _ = winners[0]
        assert len(store.list_access_tokens(user.id)) == 1


class TestConcurrentTokens:
    def test_parallel_logins_get_distinct_tokens(self, gateway: AuthGateway, make_user, store: UserStore) -> None:
        user = make_user("ana@x.com")
        results = _run_together(5, lambda i: gateway.tokens.login("ana@x.com", PASSWORD, f"device-{i}")[1])
        assert all(not isinstance(r, Exception) for r in results), results
        assert len({r.token.id for r in results}) == 5
        assert len(store.list_access_tokens(user.id)) == 5

    def test_logout_all_wins_over_later_validation(self, gateway: AuthGateway, make_user) -> None:
        user = make_user("ana@x.com")
        tokens: TokenAuthenticator = gateway.tokens
        issued = [tokens.login("ana@x.com", PASSWORD, f"device-{i}")[1] for i in range(4)]

        def step(index: int):
            if index == 0:
                return tokens.logout_all(user)
            return tokens.authenticate(issued[index].plain_text)

        _run_together(4, step)
        for token in issued:
            with pytest.raises(Unauthenticated):
                tokens.authenticate(token.plain_text)
