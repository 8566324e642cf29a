"""Translation coordinator using OpenAI-compatible APIs."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import requests
from loguru import logger

from ..config.schemas import ApiConfig
from .errors import ErrorKind, TranslateError

API_ENGINE = "api"
CACHED_ENGINE = "cached"

LANGUAGE_NAMES = {
    "ja": "Japanese",
    "en": "English",
    "zh": "Chinese",
    "ko": "Korean",
}


@dataclass
class TranslationResult:
    """Container for translated text."""

    success: bool
    translated_text: str = ""
    engine: str = ""
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "TranslationResult":
        return cls(success=False, error=error)

    def to_message(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error or "翻译失败"}
        return {"success": True, "translatedText": self.translated_text, "engine": self.engine}

    @classmethod
    def from_message(cls, payload: dict[str, Any]) -> "TranslationResult":
        if not payload.get("success"):
            return cls.failure(str(payload.get("error") or "翻译失败"))
        return cls(
            success=True,
            translated_text=str(payload.get("translatedText", "")),
            engine=str(payload.get("engine", "")),
        )


class Translator:
    """Call external translation API using OpenAI-compatible schema."""

    def __init__(self, api_config: ApiConfig, session: Optional[requests.Session] = None) -> None:
        self._api_config = api_config
        # None: each call goes through requests.post on its own connection.
        self._session = session

    def build_prompt(self, text: str, source_lang: str) -> str:
        target = LANGUAGE_NAMES.get(self._api_config.target_language, self._api_config.target_language)
        source = "text" if source_lang == "auto" else f"{LANGUAGE_NAMES.get(source_lang, source_lang)} text"
        return (
            f"Translate the following live-stream chat {source} to {target}. "
            "Keep emotes, usernames and symbols unchanged and keep the casual tone. "
            "Only output the translation.\n\n"
            f"{text}"
        )

    def translate(self, text: str, source_lang: str = "auto") -> TranslationResult:
        if not self._api_config.api_key:
            raise TranslateError("未设置API密钥", ErrorKind.API)

        payload = {
            "model": self._api_config.model,
            "messages": [{"role": "user", "content": self.build_prompt(text, source_lang)}],
            "temperature": 0.3,
            "stream": False,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_config.api_key}",
        }

        logger.debug(f"请求翻译: {text[:50]}{'...' if len(text) > 50 else ''}")
        try:
            post = self._session.post if self._session is not None else requests.post
            response = post(
                self._api_config.endpoint,
                json=payload,
                headers=headers,
                timeout=self._api_config.timeout_s,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TranslateError(f"网络错误: {exc}", ErrorKind.NETWORK) from exc

        if response.status_code >= 400:
            raise TranslateError(self._describe_error(response), ErrorKind.API)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TranslateError(f"API响应格式错误: {exc}", ErrorKind.API) from exc

        translated = str(content).strip()
        if not translated:
            raise TranslateError("API返回了空的译文", ErrorKind.API)
        return TranslationResult(success=True, translated_text=translated, engine=API_ENGINE)

    async def translate_async(self, text: str, source_lang: str = "auto") -> TranslationResult:
        return await asyncio.to_thread(self.translate, text, source_lang)

    @staticmethod
    def _describe_error(response: requests.Response) -> str:
        detail = f"错误状态码: {response.status_code}"
        try:
            message = response.json().get("error", {}).get("message")
        except (ValueError, AttributeError):
            message = None
        if message:
            detail = f"{detail} - {message}"
        if response.status_code == 429:
            detail = f"API速率限制: {detail}"
        elif response.status_code in (401, 403):
            detail = f"API密钥无效: {detail}"
        return detail
