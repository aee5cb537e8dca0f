"""
tests/test_concurrency.py -- Conflicting state transitions racing on real threads.

Every test here overrides the `services` fixture with a file-backed SQLite
database, so each thread gets its own connection and the BEGIN IMMEDIATE
write lock actually decides who goes first. The shared conftest factories
(admin, make_owner, make_reader, offerable_post) build their data in that
same database.

Coverage:
  - N owner threads accepting different Pending requests on one post:
    one Accepted, post Borrowed, the rest NotAvailable
  - N admin threads deciding the same Pending owner / post: one wins,
    the rest AlreadyProcessed
  - N threads of one reader borrowing the same post: one request, the rest Conflict
  - N threads returning the same borrowed book: one Returned, the rest NotBorrowed
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator

import pytest

from auth.models import ApprovalStatus
from auth.schemas import OwnerSignUp
from core.errors import AlreadyProcessed, BookSwapError, Conflict, NotAvailable, NotBorrowed
from market.models import PostStatus, RequestStatus
from market.schemas import BookRequestResponse, BookRequestReturn
from services import Services, build_services

THREADS = 4


@pytest.fixture
def services(tmp_path) -> Generator[Services, None, None]:
    svc = build_services(f"sqlite:///{tmp_path / 'race.db'}")
    yield svc
    svc.close()


def _race(calls: list[Callable[[], object]]) -> list[object]:
    """Start every call at the same moment; return each result or raised BookSwapError, in call order."""
    barrier = threading.Barrier(len(calls))
    outcomes: list[object] = [None] * len(calls)

    def run(index: int, call: Callable[[], object]) -> None:
        barrier.wait()
        try:
            outcomes[index] = call()
        except BookSwapError as exc:
            outcomes[index] = exc

    threads = [threading.Thread(target=run, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def _split(outcomes: list[object]) -> tuple[list[object], list[BookSwapError]]:
    winners = [o for o in outcomes if not isinstance(o, BookSwapError)]
    losers = [o for o in outcomes if isinstance(o, BookSwapError)]
    return winners, losers


class TestRespondRace:
    def test_one_of_many_accepts_wins(self, services, offerable_post, make_reader) -> None:
        """Different requests, same post: only one can move it to Borrowed."""
        post_id, owner = offerable_post
        readers = [make_reader(f"reader{i}") for i in range(THREADS)]
        request_ids = [services.market.borrow_book(r, post_id) for r in readers]

        def accept(request_id: int, reader_id: int) -> Callable[[], object]:
            body = BookRequestResponse(
                request_id=request_id, book_post_id=post_id, reader_id=reader_id, status="Accepted"
            )
            return lambda: services.market.respond_to_request(owner, body)

        outcomes = _race([accept(rid, r.reader_id) for rid, r in zip(request_ids, readers)])

        winners, losers = _split(outcomes)
        assert winners == [RequestStatus.ACCEPTED]
        assert len(losers) == THREADS - 1
        assert all(isinstance(exc, NotAvailable) for exc in losers)

        assert services.market.get_post(post_id).status is PostStatus.BORROWED
        statuses = [services.market_store.get_request(rid).status for rid in request_ids]
        assert statuses.count(RequestStatus.ACCEPTED) == 1
        assert statuses.count(RequestStatus.PENDING) == THREADS - 1


class TestModerationRace:
    def test_one_decision_per_owner(self, services, admin, password) -> None:
        owner_id = services.accounts.signup_owner(
            OwnerSignUp(
                name="olga",
                password=password,
                ssn="123-45-6789",
                email="olga@example.com",
                phone="555-0100",
            )
        )
        actions = ["approve" if i % 2 == 0 else "reject" for i in range(THREADS)]

        outcomes = _race([lambda a=a: services.accounts.process_book_owner(admin, owner_id, a) for a in actions])

        winners, losers = _split(outcomes)
        assert len(winners) == 1
        assert all(isinstance(exc, AlreadyProcessed) for exc in losers)
        assert services.principals.get_owner(owner_id).status is winners[0]
        assert winners[0] in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED)

    def test_one_decision_per_post(self, services, admin, make_owner, post_body) -> None:
        post_id = services.market.create_post(make_owner(), post_body())
        actions = ["approve" if i % 2 == 0 else "reject" for i in range(THREADS)]

        outcomes = _race([lambda a=a: services.market.process_book_post(admin, post_id, a) for a in actions])

        winners, losers = _split(outcomes)
        assert len(winners) == 1
        assert all(isinstance(exc, AlreadyProcessed) for exc in losers)
        assert services.market.get_post(post_id).status is winners[0]


class TestBorrowAndReturnRace:
    def test_one_open_request_per_reader(self, services, offerable_post, make_reader) -> None:
        post_id, owner = offerable_post
        rita = make_reader()

        outcomes = _race([lambda: services.market.borrow_book(rita, post_id) for _ in range(THREADS)])

        winners, losers = _split(outcomes)
        assert len(winners) == 1
        assert all(isinstance(exc, Conflict) for exc in losers)
        assert [r.id for r in services.market.list_requests_for_owner(owner)] == winners

    def test_one_return_per_loan(self, services, offerable_post, make_reader) -> None:
        post_id, owner = offerable_post
        rita = make_reader()
        request_id = services.market.borrow_book(rita, post_id)
        services.market.respond_to_request(
            owner,
            BookRequestResponse(request_id=request_id, book_post_id=post_id, reader_id=rita.reader_id, status="accepted"),
        )
        body = BookRequestReturn(request_id=request_id, book_post_id=post_id, reader_id=rita.reader_id)

        outcomes = _race([lambda: services.market.return_book(rita, body) for _ in range(THREADS)])

        winners, losers = _split(outcomes)
        assert len(winners) == 1
        assert winners[0].status is RequestStatus.RETURNED
        assert all(isinstance(exc, NotBorrowed) for exc in losers)
        assert services.market.get_post(post_id).status is PostStatus.AVAILABLE
