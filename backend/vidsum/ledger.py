import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from . import repo
from .errors import InsufficientFunds, JobConflict, LedgerError


@dataclass(frozen=True)
class StoredResult:
    text: str
    title: Optional[str] = None
    job_id: Optional[str] = None
    requester_id: Optional[str] = None
    url: Optional[str] = None

    @property
    def completed(self) -> bool:
        return bool(self.text)


class JobLedger(Protocol):
    def find_by_url(self, url: str) -> Optional[StoredResult]: ...

    def find_by_id(self, job_id: str) -> Optional[StoredResult]:
        """Any record under ``job_id``, pending ones with empty text."""
        ...

    def persist(
        self,
        job_id: str,
        payload: Dict[str, Any],
        result: str,
    ) -> None: ...


class CoinAccount(Protocol):
    def get_balance(self, requester_id: str) -> Optional[int]: ...

    def debit(self, requester_id: str, amount: int) -> None: ...

    def record_spend(
        self,
        requester_id: str,
        job_id: str,
        amount: int = 0,
        url: Optional[str] = None,
    ) -> None: ...

    def find_spend(self, requester_id: str, job_id: str) -> Optional[str]:
        """URL a recorded spend for this job was made on, or None.

        Spends recorded before URLs were kept come back as an empty string.
        """
        ...


def _stored(row: Optional[Dict[str, Any]]) -> Optional[StoredResult]:
    if not row:
        return None
    return StoredResult(
        text=str(row.get("response") or ""),
        title=row.get("title"),
        job_id=row.get("id"),
        requester_id=row.get("user_id"),
        url=row.get("url"),
    )


class SqliteJobLedger:
    def find_by_url(self, url: str) -> Optional[StoredResult]:
        try:
            return _stored(repo.find_summary_by_url(url))
        except sqlite3.Error as e:
            raise LedgerError(f"find_by_url failed: {e}") from e

    def find_by_id(self, job_id: str) -> Optional[StoredResult]:
        try:
            return _stored(repo.get_summary(job_id))
        except sqlite3.Error as e:
            raise LedgerError(f"find_by_id failed: {e}") from e

    def persist(
        self,
        job_id: str,
        payload: Dict[str, Any],
        result: str,
    ) -> None:
        try:
            ok = repo.upsert_summary_result(
                summary_id=job_id,
                user_id=str(payload["requester_id"]),
                url=str(payload["url"]),
                title=payload.get("title"),
                response=result,
            )
        except sqlite3.Error as e:
            raise LedgerError(f"persist failed: {e}") from e
        if not ok:
            raise JobConflict()


class SqliteCoinAccount:
    def get_balance(self, requester_id: str) -> Optional[int]:
        try:
            return repo.get_user_coins(requester_id)
        except sqlite3.Error as e:
            raise LedgerError(f"get_balance failed: {e}") from e

    def debit(self, requester_id: str, amount: int) -> None:
        try:
            ok = repo.debit_coins(requester_id, amount)
        except sqlite3.Error as e:
            raise LedgerError(f"debit failed: {e}") from e
        if not ok:
            raise InsufficientFunds()

    def record_spend(
        self,
        requester_id: str,
        job_id: str,
        amount: int = 0,
        url: Optional[str] = None,
    ) -> None:
        try:
            repo.insert_coin_spend(requester_id, job_id, amount, url)
        except sqlite3.Error as e:
            raise LedgerError(f"record_spend failed: {e}") from e

    def find_spend(self, requester_id: str, job_id: str) -> Optional[str]:
        try:
            row = repo.find_coin_spend(requester_id, job_id)
        except sqlite3.Error as e:
            raise LedgerError(f"find_spend failed: {e}") from e
        if row is None:
            return None
        return str(row.get("url") or "")
