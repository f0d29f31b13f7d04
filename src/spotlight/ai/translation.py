"""Translation client for the public Google Translate web endpoint."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import BackendError, BackendUnavailable, NoOpCondition

__all__ = ["TranslationResult", "Translator", "parse_batchexecute_response", "ENGLISH"]

LOGGER = logging.getLogger(__name__)
ENGLISH = "en"
_ENDPOINT = "https://translate.google.com/_/TranslateWebserverUi/data/batchexecute"
_RPC_ID = "MkEWBc"
_XSSI_PREFIX_LEN = 6


@dataclass(slots=True, frozen=True)
class TranslationResult:
    text: str
    detected_language: str


class Translator:
    """Translates text to English, or to a configured second language.

    English input is translated to the second language when one is set;
    any other input is translated to English. English input with no second
    language raises :class:`NoOpCondition`.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        max_retries: int = 2,
    ) -> None:
        self._http = http_client
        self._timeout = timeout
        self._max_retries = max(1, max_retries)

    async def translate(self, text: str, second_language: str = "") -> TranslationResult:
        if not text.strip():
            raise NoOpCondition("Empty text")
        target = (second_language or "").strip()
        if not target or target == ENGLISH:
            english = await self.translate_to(text, ENGLISH)
            if english.detected_language == ENGLISH:
                raise NoOpCondition("Source is English")
            return english

        second = await self.translate_to(text, target)
        if second.detected_language == ENGLISH:
            return second
        return await self.translate_to(text, ENGLISH)

    async def translate_to(self, text: str, target_language: str) -> TranslationResult:
        """Translate ``text`` into ``target_language`` with auto-detected source."""

        request_id = random.randint(1000, 9999)
        params = {
            "rpcids": _RPC_ID,
            "source-path": "/",
            "f.sid": "",
            "bl": "",
            "hl": "en-US",
            "soc-app": "1",
            "soc-platform": "1",
            "soc-device": "1",
            "_reqid": str(request_id),
            "rt": "c",
        }
        inner = json.dumps([[text, "auto", target_language.strip(), True], [None]])
        freq = json.dumps([[[_RPC_ID, inner, None, "0"]]])
        headers = {"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"}

        response = None
        try:
            async for attempt in AsyncRetrying(
                reraise=True,
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(multiplier=0.2, max=1.0),
                retry=retry_if_exception_type(httpx.TransportError),
            ):
                with attempt:
                    response = await self._post(params, {"f.req": freq}, headers)
        except httpx.TimeoutException as exc:
            raise BackendUnavailable("Translation request timed out") from exc
        except httpx.TransportError as exc:
            raise BackendUnavailable(f"Translation service unreachable: {exc}") from exc
        if response.is_error:
            raise BackendError(f"HTTP error: {response.status_code}")
        result = parse_batchexecute_response(response.text)
        LOGGER.debug(
            "Translated %d chars to %s (detected=%s)",
            len(text),
            target_language,
            result.detected_language,
        )
        return result

    async def _post(self, params: dict[str, str], data: dict[str, str], headers: dict[str, str]) -> httpx.Response:
        try:
            if self._http is not None:
                return await self._http.post(_ENDPOINT, params=params, data=data, headers=headers)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.post(_ENDPOINT, params=params, data=data, headers=headers)
        except httpx.TransportError:
            raise
        except httpx.HTTPError as exc:
            raise BackendError(f"Request failed: {exc}") from exc


def parse_batchexecute_response(body: str) -> TranslationResult:
    """Extract the translation and detected language from a batchexecute reply."""

    if len(body) <= _XSSI_PREFIX_LEN:
        raise BackendError("Invalid response format")
    for line in body[_XSSI_PREFIX_LEN:].splitlines():
        if not line.startswith("[") or line.startswith('[["e"'):
            continue
        try:
            outer = json.loads(line)
        except json.JSONDecodeError as exc:
            raise BackendError(f"Failed to parse response JSON: {exc}") from exc
        for item in outer if isinstance(outer, list) else []:
            if not isinstance(item, list) or len(item) < 3 or item[0] != "wrb.fr":
                continue
            if not isinstance(item[2], str):
                continue
            try:
                data = json.loads(item[2])
            except json.JSONDecodeError as exc:
                raise BackendError(f"Failed to parse translation data: {exc}") from exc
            parts = _dig(data, 1, 0, 0, 5)
            if not isinstance(parts, list):
                continue
            text = "".join(
                part[0] for part in parts if isinstance(part, list) and part and isinstance(part[0], str)
            )
            detected = _dig(data, 1, 3)
            if not isinstance(detected, str):
                detected = _dig(data, 2)
            if not isinstance(detected, str):
                detected = "auto"
            return TranslationResult(text=text, detected_language=detected)
    raise BackendError("Could not parse translation from response")


def _dig(value: Any, *path: int) -> Any:
    for index in path:
        if not isinstance(value, list) or index >= len(value):
            return None
        value = value[index]
    return value
