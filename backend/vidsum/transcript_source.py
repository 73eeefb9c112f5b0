"""
Transcript extraction for YouTube videos.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from http.client import HTTPException
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import parse_qs, quote, urlparse
from urllib.request import Request as UrlRequest, urlopen

import requests
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    InvalidVideoId,
    YouTubeTranscriptApi,
)

from .errors import InvalidUrl, NoTranscript

logger = logging.getLogger(__name__)

NO_TITLE = "No Title Found!"

_VIDEO_ID = r"([a-zA-Z0-9_-]{11})"
_TAIL = r"(?:[?&#/].*)?$"

YOUTUBE_URL_PATTERNS = [
    (
        r"^(?:https?://)?(?:www\.|m\.)?youtube\.com/watch\?(?:.*&)?v="
        + _VIDEO_ID
        + r"(?:[&#].*)?$"
    ),
    r"^(?:https?://)?youtu\.be/" + _VIDEO_ID + _TAIL,
    r"^(?:https?://)?(?:www\.)?youtube\.com/embed/" + _VIDEO_ID + _TAIL,
    r"^(?:https?://)?(?:www\.)?youtube\.com/v/" + _VIDEO_ID + _TAIL,
    r"^(?:https?://)?(?:www\.|m\.)?youtube\.com/shorts/" + _VIDEO_ID + _TAIL,
    r"^(?:https?://)?(?:www\.)?youtube\.com/live/" + _VIDEO_ID + _TAIL,
]

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    start: float = 0.0
    duration: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def title(self) -> Optional[str]:
        v = self.metadata.get("title")
        return str(v) if v else None


class TranscriptSource(Protocol):
    def fetch(self, url: str) -> List[TranscriptSegment]: ...


def extract_video_id(url: str) -> Optional[str]:
    """
    Extract the 11-character video id from a YouTube URL.
    Returns None when the URL is not a YouTube video URL.
    """
    url = str(url or "").strip()
    if not url:
        return None

    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.match(pattern, url)
        if m:
            return m.group(1)

    parsed = urlparse(url if "://" in url else "https://" + url)
    host = (parsed.netloc or "").lower()
    if host in ("youtube.com", "www.youtube.com", "m.youtube.com"):
        v = parse_qs(parsed.query).get("v", [None])[0]
        if v and re.match(r"^[a-zA-Z0-9_-]{11}$", v):
            return v

    return None


def validate_youtube_url(url: str) -> str:
    """Return the video id or raise InvalidUrl."""
    video_id = extract_video_id(url)
    if not video_id:
        raise InvalidUrl(f"Not a valid YouTube URL: {url}")
    return video_id


def title_of(segments: List[TranscriptSegment]) -> str:
    if segments and segments[0].title:
        return str(segments[0].title)
    return NO_TITLE


class YouTubeTranscriptSource:
    def __init__(
        self,
        *,
        languages: Optional[List[str]] = None,
        fetch_title: bool = True,
        timeout_seconds: float = 10.0,
        api: Optional[YouTubeTranscriptApi] = None,
    ) -> None:
        self._languages = list(languages or ["en"])
        self._fetch_title = bool(fetch_title)
        self._timeout = float(timeout_seconds)
        self._api = api or YouTubeTranscriptApi()

    def fetch(self, url: str) -> List[TranscriptSegment]:
        video_id = validate_youtube_url(url)

        try:
            fetched = self._api.fetch(video_id, languages=self._languages)
        except InvalidVideoId as e:
            raise InvalidUrl(f"Not a valid YouTube video: {url}") from e
        except CouldNotRetrieveTranscript as e:
            logger.info("no transcript for %s: %s", video_id, type(e).__name__)
            raise NoTranscript() from e
        except requests.RequestException as e:
            logger.warning("transcript request failed for %s: %s", video_id, e)
            raise NoTranscript() from e

        segments: List[TranscriptSegment] = []
        for snippet in fetched:
            text = str(getattr(snippet, "text", "") or "").strip()
            if not text:
                continue
            segments.append(
                TranscriptSegment(
                    text=text,
                    start=float(getattr(snippet, "start", 0.0) or 0.0),
                    duration=float(getattr(snippet, "duration", 0.0) or 0.0),
                )
            )

        if not segments:
            raise NoTranscript()

        title = self._lookup_title(url) if self._fetch_title else None
        if title:
            first = segments[0]
            segments[0] = TranscriptSegment(
                text=first.text,
                start=first.start,
                duration=first.duration,
                metadata={"title": title, "video_id": video_id},
            )
        return segments

    def _lookup_title(self, url: str) -> Optional[str]:
        oembed = (
            "https://www.youtube.com/oembed?format=json&url="
            + quote(url, safe="")
        )
        req = UrlRequest(oembed, headers={"User-Agent": _USER_AGENT})
        try:
            with urlopen(req, timeout=self._timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
            obj = json.loads(raw or "{}")
        except (OSError, HTTPException, ValueError) as e:
            logger.info("title lookup failed for %s: %s", url, e)
            return None
        if not isinstance(obj, dict):
            return None
        title = str(obj.get("title") or "").strip()
        return title or None

