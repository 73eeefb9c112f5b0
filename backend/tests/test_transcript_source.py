from __future__ import annotations

import io
from http.client import IncompleteRead
from types import SimpleNamespace
from typing import List, Optional

import pytest

from vidsum.errors import InvalidUrl, NoTranscript
from vidsum.transcript_source import (
    NO_TITLE,
    TranscriptSegment,
    YouTubeTranscriptSource,
    extract_video_id,
    title_of,
    validate_youtube_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtube.com/watch?v=dQw4w9WgXcQ&t=42s",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
        "youtu.be/dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ?si=abc",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/live/dQw4w9WgXcQ?feature=share",
    ],
)
def test_extract_video_id_accepts_youtube_forms(url) -> None:
    assert extract_video_id(url) == "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "not a url",
        "https://vimeo.com/123456",
        "https://www.youtube.com/watch?v=short",
        "https://www.youtube.com/channel/UC1234567890",
    ],
)
def test_invalid_urls_are_rejected(url) -> None:
    assert extract_video_id(url) is None
    with pytest.raises(InvalidUrl):
        validate_youtube_url(url)


def test_title_of_reads_first_segment_only() -> None:
    segs = [
        TranscriptSegment("a"),
        TranscriptSegment("b", metadata={"title": "Second"}),
    ]
    assert title_of(segs) == NO_TITLE
    assert title_of([]) == NO_TITLE
    assert title_of([TranscriptSegment("a", metadata={"title": "T"})]) == "T"


class FakeApi:
    def __init__(self, snippets=None, error: Optional[Exception] = None):
        self.snippets = snippets or []
        self.error = error
        self.calls: List[tuple] = []

    def fetch(self, video_id, languages=("en",)):
        self.calls.append((video_id, list(languages)))
        if self.error is not None:
            raise self.error
        return list(self.snippets)


def _snippet(text: str, start: float = 0.0, duration: float = 1.0):
    return SimpleNamespace(text=text, start=start, duration=duration)


def test_fetch_maps_snippets_to_segments() -> None:
    api = FakeApi(
        [_snippet("hello", 0.0, 1.5), _snippet(" "), _snippet("x", 2)]
    )
    source = YouTubeTranscriptSource(
        languages=["en"],
        fetch_title=False,
        api=api,
    )

    segs = source.fetch("https://youtu.be/dQw4w9WgXcQ")

    assert api.calls == [("dQw4w9WgXcQ", ["en"])]
    assert [s.text for s in segs] == ["hello", "x"]
    assert segs[0].duration == 1.5
    assert segs[1].start == 2.0
    assert title_of(segs) == NO_TITLE


def test_fetch_attaches_title_to_first_segment(monkeypatch) -> None:
    source = YouTubeTranscriptSource(
        api=FakeApi([_snippet("one"), _snippet("two")]),
    )
    monkeypatch.setattr(source, "_lookup_title", lambda url: "My Video")

    segs = source.fetch("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    assert segs[0].title == "My Video"
    assert segs[0].metadata["video_id"] == "dQw4w9WgXcQ"
    assert segs[1].title is None


def test_fetch_invalid_url_does_not_call_api() -> None:
    api = FakeApi([_snippet("x")])
    source = YouTubeTranscriptSource(fetch_title=False, api=api)

    with pytest.raises(InvalidUrl):
        source.fetch("https://example.com/video")
    assert api.calls == []


def test_disabled_transcripts_are_no_transcript() -> None:
    from youtube_transcript_api import TranscriptsDisabled

    source = YouTubeTranscriptSource(
        fetch_title=False,
        api=FakeApi(error=TranscriptsDisabled("dQw4w9WgXcQ")),
    )
    with pytest.raises(NoTranscript) as ei:
        source.fetch("https://youtu.be/dQw4w9WgXcQ")
    assert ei.value.http_status == 404
    assert "No Transcript available" in ei.value.message


def test_empty_transcript_is_no_transcript() -> None:
    source = YouTubeTranscriptSource(
        fetch_title=False,
        api=FakeApi([_snippet("  ")]),
    )
    with pytest.raises(NoTranscript):
        source.fetch("https://youtu.be/dQw4w9WgXcQ")


class _BrokenResponse:
    def __init__(self, error: Exception) -> None:
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def read(self) -> bytes:
        raise self.error


@pytest.mark.parametrize(
    "error",
    [
        ConnectionResetError("reset by peer"),
        IncompleteRead(b"{\"ti"),
        UnicodeDecodeError("utf-8", b"\xff", 0, 1, "bad byte"),
    ],
)
def test_title_lookup_failure_keeps_transcript(monkeypatch, error) -> None:
    import vidsum.transcript_source as ts

    monkeypatch.setattr(
        ts,
        "urlopen",
        lambda req, timeout=None: _BrokenResponse(error),
    )
    source = YouTubeTranscriptSource(
        fetch_title=True,
        api=FakeApi([_snippet("one"), _snippet("two")]),
    )

    segs = source.fetch("https://youtu.be/dQw4w9WgXcQ")

    assert [s.text for s in segs] == ["one", "two"]
    assert title_of(segs) == NO_TITLE


def test_title_lookup_ignores_non_object_json(monkeypatch) -> None:
    import vidsum.transcript_source as ts

    monkeypatch.setattr(
        ts,
        "urlopen",
        lambda req, timeout=None: io.BytesIO(b"[\"not\", \"an object\"]"),
    )
    source = YouTubeTranscriptSource(api=FakeApi([_snippet("one")]))

    segs = source.fetch("https://youtu.be/dQw4w9WgXcQ")

    assert title_of(segs) == NO_TITLE
