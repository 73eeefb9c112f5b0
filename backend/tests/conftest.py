import os
import tempfile
import uuid
from typing import Any, Dict, Generator, List

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ["GENERATION_BACKEND"] = "fake"
os.environ["VIDSUM_DISABLE_TITLE_LOOKUP"] = "1"
os.environ.setdefault(
    "VIDSUM_DATA_DIR",
    tempfile.mkdtemp(prefix="vidsum-test-"),
)

_backend_dir = Path(__file__).resolve().parents[1]
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

from vidsum.db import init_db  # noqa: E402
from vidsum.main import app  # noqa: E402


class WordEncoding:
    """Whitespace tokenizer; one token per word, ids index a shared vocab."""

    def __init__(self) -> None:
        self._ids: Dict[str, int] = {}
        self._words: List[str] = []

    def encode(self, text: str) -> List[int]:
        out = []
        for w in str(text or "").split():
            if w not in self._ids:
                self._ids[w] = len(self._words)
                self._words.append(w)
            out.append(self._ids[w])
        return out

    def decode(self, tokens: List[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


@pytest.fixture()
def word_encoding() -> WordEncoding:
    return WordEncoding()


@pytest.fixture()
def db() -> None:
    init_db()


@pytest.fixture()
def make_user(db) -> Any:
    from vidsum.repo import create_user

    def _make(coins: int = 50) -> Dict[str, Any]:
        email = f"{uuid.uuid4().hex}@example.com"
        return create_user(name="Test User", email=email, coins=coins)

    return _make


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c
