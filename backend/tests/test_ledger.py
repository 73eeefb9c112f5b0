from __future__ import annotations

import threading
import uuid

import pytest


def _url() -> str:
    return f"https://youtu.be/{uuid.uuid4().hex[:11]}"


def test_balance_and_atomic_debit(make_user) -> None:
    from vidsum.errors import InsufficientFunds
    from vidsum.ledger import SqliteCoinAccount

    user = make_user(coins=25)
    account = SqliteCoinAccount()

    assert account.get_balance(user["id"]) == 25
    assert account.get_balance("missing-user") is None

    account.debit(user["id"], 10)
    account.debit(user["id"], 10)
    assert account.get_balance(user["id"]) == 5

    with pytest.raises(InsufficientFunds):
        account.debit(user["id"], 10)
    assert account.get_balance(user["id"]) == 5


def test_concurrent_debits_never_overdraw(make_user) -> None:
    from vidsum.errors import InsufficientFunds
    from vidsum.ledger import SqliteCoinAccount

    user = make_user(coins=30)
    account = SqliteCoinAccount()
    outcomes = []
    lock = threading.Lock()

    def _debit() -> None:
        try:
            account.debit(user["id"], 10)
            ok = True
        except InsufficientFunds:
            ok = False
        with lock:
            outcomes.append(ok)

    threads = [threading.Thread(target=_debit) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert outcomes.count(True) == 3
    assert account.get_balance(user["id"]) == 0


def test_record_spend_is_listed(make_user) -> None:
    from vidsum.ledger import SqliteCoinAccount
    from vidsum.repo import list_coin_spends

    user = make_user()
    SqliteCoinAccount().record_spend(user["id"], "job-xyz", 10)

    spends = list_coin_spends(user["id"])
    assert len(spends) == 1
    assert spends[0]["summary_id"] == "job-xyz"
    assert spends[0]["amount"] == 10


def test_persist_then_find_by_url_and_id(make_user) -> None:
    from vidsum.ledger import SqliteJobLedger

    user = make_user()
    ledger = SqliteJobLedger()
    url = _url()
    job_id = str(uuid.uuid4())

    assert ledger.find_by_url(url) is None
    assert ledger.find_by_id(job_id) is None

    ledger.persist(
        job_id,
        {"requester_id": user["id"], "url": url, "title": "A title"},
        "the summary",
    )

    by_url = ledger.find_by_url(url)
    assert by_url is not None
    assert by_url.text == "the summary"
    assert by_url.title == "A title"
    assert by_url.job_id == job_id

    by_id = ledger.find_by_id(job_id)
    assert by_id is not None
    assert by_id.text == "the summary"


def test_pending_summary_is_not_a_cache_hit(make_user) -> None:
    from vidsum.ledger import SqliteJobLedger
    from vidsum.repo import create_summary, get_summary

    user = make_user()
    url = _url()
    job_id = str(uuid.uuid4())
    create_summary(
        summary_id=job_id,
        user_id=user["id"],
        url=url,
        title="Pending title",
    )

    ledger = SqliteJobLedger()
    assert ledger.find_by_url(url) is None
    pending = ledger.find_by_id(job_id)
    assert pending is not None
    assert pending.completed is False
    assert pending.requester_id == user["id"]
    assert pending.url == url

    # completing the pending record keeps its title
    ledger.persist(
        job_id,
        {"requester_id": user["id"], "url": url, "title": None},
        "done",
    )
    row = get_summary(job_id)
    assert row["status"] == "completed"
    assert row["title"] == "Pending title"
    assert ledger.find_by_url(url).text == "done"


def test_persist_under_taken_id_is_conflict(make_user) -> None:
    from vidsum.errors import JobConflict
    from vidsum.ledger import SqliteJobLedger
    from vidsum.repo import create_summary, get_summary

    owner = make_user()
    other = make_user()
    url = _url()
    job_id = str(uuid.uuid4())
    create_summary(
        summary_id=job_id,
        user_id=owner["id"],
        url=url,
        title="Pending title",
    )
    ledger = SqliteJobLedger()

    other_url = _url()
    with pytest.raises(JobConflict):
        ledger.persist(
            job_id,
            {"requester_id": owner["id"], "url": other_url, "title": None},
            "summary of another video",
        )
    with pytest.raises(JobConflict):
        ledger.persist(
            job_id,
            {"requester_id": other["id"], "url": url, "title": None},
            "summary by someone else",
        )

    row = get_summary(job_id)
    assert row["status"] == "pending"
    assert row["user_id"] == owner["id"]
    assert row["url"] == url
    assert ledger.find_by_url(url) is None
    assert ledger.find_by_url(other_url) is None


def test_find_spend_returns_spend_url(make_user) -> None:
    from vidsum.ledger import SqliteCoinAccount

    user = make_user()
    account = SqliteCoinAccount()
    url = _url()

    assert account.find_spend(user["id"], "job-1") is None
    account.record_spend(user["id"], "job-1", 10, url)
    account.record_spend(user["id"], "job-2", 10)

    assert account.find_spend(user["id"], "job-1") == url
    assert account.find_spend(user["id"], "job-2") == ""
    assert account.find_spend("someone-else", "job-1") is None


def test_sqlite_errors_become_ledger_errors(monkeypatch, db) -> None:
    import sqlite3

    from vidsum import repo
    from vidsum.errors import LedgerError
    from vidsum.ledger import SqliteCoinAccount, SqliteJobLedger

    def _boom(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repo, "debit_coins", _boom)
    monkeypatch.setattr(repo, "upsert_summary_result", _boom)

    with pytest.raises(LedgerError):
        SqliteCoinAccount().debit("u", 10)
    with pytest.raises(LedgerError):
        SqliteJobLedger().persist(
            "j",
            {"requester_id": "u", "url": _url(), "title": None},
            "text",
        )


def test_create_user_is_idempotent_by_email(db) -> None:
    from vidsum.repo import create_user

    email = f"{uuid.uuid4().hex}@example.com"
    a = create_user(name="A", email=email, coins=50)
    b = create_user(name="B", email=email, coins=50)

    assert a["id"] == b["id"]
    assert b["coins"] == 50
