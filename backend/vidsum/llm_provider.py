from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, List, Protocol, Tuple, cast

from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import dashscope
import httpx
import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from .errors import BackendError, ContentSafetyRejected, GenerationTimeout
from .settings import Settings

logger = logging.getLogger(__name__)

STANDARD = "standard"
CONSERVATIVE = "conservative"

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


@dataclass(frozen=True)
class GenerationProfile:
    name: str
    max_output_tokens: int
    temperature: float
    safety_threshold: str
    combine_template: str = "summary"

    def safety_settings(self) -> List[Dict[str, str]]:
        return [
            {"category": c, "threshold": self.safety_threshold}
            for c in HARM_CATEGORIES
        ]


def profiles_from_settings(
    s: Settings,
) -> Tuple[GenerationProfile, GenerationProfile]:
    standard = GenerationProfile(
        name=STANDARD,
        max_output_tokens=int(s.standard_max_tokens),
        temperature=float(s.standard_temperature),
        safety_threshold=str(s.standard_safety_threshold),
        combine_template="summary",
    )
    conservative = GenerationProfile(
        name=CONSERVATIVE,
        max_output_tokens=int(s.conservative_max_tokens),
        temperature=float(s.conservative_temperature),
        safety_threshold=str(s.conservative_safety_threshold),
        combine_template="safe_summary",
    )
    return standard, conservative


class GenerationBackend(Protocol):
    name: str

    def generate(
        self,
        prompt: str,
        profile: GenerationProfile,
        *,
        timeout: float,
    ) -> str: ...


class FakeBackend:
    name = "fake"

    def generate(
        self,
        prompt: str,
        profile: GenerationProfile,
        *,
        timeout: float,
    ) -> str:
        body = " ".join(str(prompt or "").split())
        limit = max(16, int(profile.max_output_tokens))
        return f"[FAKE:{profile.name}] {body[-limit:]}".strip()


class DashScopeBackend:
    name = "dashscope"

    # DashScope reports its content moderation rejections with this code.
    _SAFETY_CODES = ("DataInspectionFailed", "data_inspection_failed")

    def __init__(self, *, api_key: str, model: str) -> None:
        self._api_key = str(api_key or "")
        self._model = str(model or "qwen-plus")

    def generate(
        self,
        prompt: str,
        profile: GenerationProfile,
        *,
        timeout: float,
    ) -> str:
        if not self._api_key:
            raise BackendError("MISSING_DASHSCOPE_API_KEY")

        try:
            resp = dashscope.Generation.call(
                model=self._model,
                api_key=self._api_key,
                messages=cast(Any, [{"role": "user", "content": prompt}]),
                result_format="message",
                max_tokens=int(profile.max_output_tokens),
                temperature=float(profile.temperature),
                request_timeout=max(1, int(timeout)),
            )
        except requests.Timeout as e:
            raise GenerationTimeout("DASHSCOPE_TIMEOUT") from e
        except requests.RequestException as e:
            raise BackendError(
                f"DASHSCOPE_REQUEST_FAILED:{type(e).__name__}:{e}"
            ) from e
        resp = cast(Any, resp)

        if resp.status_code != HTTPStatus.OK:
            code = str(getattr(resp, "code", "") or "")
            message = str(getattr(resp, "message", "") or "")
            if code in self._SAFETY_CODES:
                raise ContentSafetyRejected(f"{code}: {message}")
            if resp.status_code in (
                HTTPStatus.REQUEST_TIMEOUT,
                HTTPStatus.GATEWAY_TIMEOUT,
            ):
                raise GenerationTimeout(f"{code}: {message}")
            raise BackendError(f"ERROR: {code} - {message}")

        choice = resp.output.choices[0]
        if str(choice.get("finish_reason") or "") == "content_filter":
            raise ContentSafetyRejected("DASHSCOPE_CONTENT_FILTER")
        return str(choice["message"]["content"] or "")


class GeminiBackend:
    name = "gemini"

    _BLOCKING_FINISH_REASONS = (
        "SAFETY",
        "BLOCKLIST",
        "PROHIBITED_CONTENT",
        "SPII",
    )

    def __init__(self, *, api_key: str, model: str) -> None:
        self._model = str(model or "gemini-1.5-flash")
        self._client = None
        if api_key:
            self._client = genai.Client(api_key=str(api_key))

    def generate(
        self,
        prompt: str,
        profile: GenerationProfile,
        *,
        timeout: float,
    ) -> str:
        if self._client is None:
            raise BackendError("MISSING_GOOGLE_API_KEY")

        config = genai_types.GenerateContentConfig(
            max_output_tokens=int(profile.max_output_tokens),
            temperature=float(profile.temperature),
            safety_settings=[
                genai_types.SafetySetting(
                    category=s["category"],
                    threshold=s["threshold"],
                )
                for s in profile.safety_settings()
            ],
            http_options=genai_types.HttpOptions(
                timeout=max(1000, int(float(timeout) * 1000))
            ),
        )
        try:
            resp = self._client.models.generate_content(
                model=self._model,
                contents=prompt,
                config=config,
            )
        except httpx.TimeoutException as e:
            raise GenerationTimeout("GEMINI_TIMEOUT") from e
        except genai_errors.APIError as e:
            if int(getattr(e, "code", 0) or 0) == 504:
                raise GenerationTimeout(f"GEMINI_HTTP_{e.code}") from e
            raise BackendError(f"GEMINI_HTTP_{e.code}:{e.message}") from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"GEMINI_REQUEST_FAILED:{type(e).__name__}:{e}"
            ) from e

        feedback = getattr(resp, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            raise ContentSafetyRejected(
                f"GEMINI_PROMPT_BLOCKED:{feedback.block_reason}"
            )

        candidates = getattr(resp, "candidates", None) or []
        if candidates:
            reason = getattr(candidates[0], "finish_reason", None)
            reason_name = str(getattr(reason, "name", reason) or "")
            if reason_name in self._BLOCKING_FINISH_REASONS:
                raise ContentSafetyRejected(f"GEMINI_FINISH_{reason_name}")

        text = resp.text
        if text is None:
            raise BackendError("GEMINI_EMPTY_RESPONSE")
        return str(text)


class OpenAICompatibleBackend:
    name = "openai"

    _SAFETY_ERROR_CODES = ("content_filter", "content_policy_violation")

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        api_key: str = "",
    ) -> None:
        self._base_url = str(base_url or "").rstrip("/")
        self._default_model = str(default_model or "")
        self._api_key = str(api_key or "")

    def _chat_completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _classify_http_error(self, code: int, raw: str) -> Exception:
        err_code = ""
        try:
            obj = json.loads(raw or "{}")
            err = obj.get("error") or {}
            if isinstance(err, dict):
                err_code = str(err.get("code") or err.get("type") or "")
        except ValueError:
            pass
        if err_code in self._SAFETY_ERROR_CODES:
            return ContentSafetyRejected(f"LLM_HTTP_{code}:{err_code}")
        if code in (408, 504):
            return GenerationTimeout(f"LLM_HTTP_{code}")
        return BackendError(f"LLM_HTTP_{code}:{raw[:500]}")

    def generate(
        self,
        prompt: str,
        profile: GenerationProfile,
        *,
        timeout: float,
    ) -> str:
        payload = {
            "model": self._default_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": float(profile.temperature),
            "max_tokens": int(profile.max_output_tokens),
            "stream": False,
        }
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        req = Request(
            self._chat_completions_url(),
            data=body,
            headers=self._headers(),
            method="POST",
        )
        try:
            with urlopen(req, timeout=max(1.0, float(timeout))) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            raise self._classify_http_error(e.code, raw) from e
        except (TimeoutError, socket.timeout) as e:
            raise GenerationTimeout("LLM_TIMEOUT") from e
        except URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                raise GenerationTimeout("LLM_TIMEOUT") from e
            raise BackendError(f"LLM_REQUEST_FAILED:{e.reason}") from e

        try:
            obj = json.loads(raw or "{}")
        except ValueError as e:
            raise BackendError("LLM_MALFORMED_RESPONSE") from e
        choices = obj.get("choices") or []
        if not choices:
            raise BackendError("LLM_EMPTY_CHOICES")
        first = choices[0] or {}
        if str(first.get("finish_reason") or "") == "content_filter":
            raise ContentSafetyRejected("LLM_CONTENT_FILTER")
        msg = first.get("message") or {}
        return str(msg.get("content") or "")


def list_backends() -> List[str]:
    return ["dashscope", "fake", "gemini", "openai"]


def build_backend(s: Settings) -> GenerationBackend:
    name = str(s.generation_backend or "").strip().lower() or "fake"
    logger.debug("generation backend: %s", name)
    if name == "fake":
        return FakeBackend()
    if name == "dashscope":
        return DashScopeBackend(
            api_key=s.dashscope_api_key,
            model=s.cloud_llm_model,
        )
    if name == "gemini":
        return GeminiBackend(api_key=s.google_api_key, model=s.gemini_model)
    if name == "openai":
        return OpenAICompatibleBackend(
            base_url=s.llm_base_url,
            default_model=s.llm_model,
            api_key=s.llm_api_key,
        )
    raise ValueError(f"unknown generation backend: {name}")
