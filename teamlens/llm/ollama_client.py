import logging
import os
from typing import Optional

import httpx

from teamlens.errors import UpstreamError

logger = logging.getLogger(__name__)


class LLMNotAvailable(UpstreamError):
    pass


class OllamaClient:
    def __init__(self, base_url: str, model: str = None, timeout: float = 30.0, transport: httpx.BaseTransport = None):
        self.base_url = base_url.rstrip("/")
        self.model = model or os.getenv("OLLAMA_MODEL", "llama3.1:8b")
        self.timeout = timeout
        self.transport = transport
        self.is_available = self._check()

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.ollama_base_url, model=settings.ollama_model, timeout=settings.llm_timeout_seconds)

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self.transport)

    def _check(self) -> bool:
        try:
            with self._client(2.0) as c:
                r = c.get(f"{self.base_url}/api/tags")
                return r.status_code == 200
        except httpx.HTTPError:
            return False

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        if not self.is_available:
            raise LLMNotAvailable("Ollama not reachable. Start Ollama or set OLLAMA_BASE_URL.")
        options = {"temperature": 0.1 if temperature is None else temperature}
        if max_tokens:
            options["num_predict"] = max_tokens
        payload = {"model": self.model, "prompt": prompt, "options": options, "stream": False}
        if system:
            payload["system"] = system
        try:
            with self._client(self.timeout) as c:
                r = c.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TimeoutException as e:
            logger.error("Ollama request timed out: %s", e)
            raise UpstreamError("Ollama request timed out")
        except httpx.HTTPError as e:
            logger.error("Ollama request failed: %s", e)
            raise UpstreamError("Ollama request failed")
        if r.status_code != 200:
            logger.error("Ollama error: status=%s body=%s", r.status_code, r.text)
            raise UpstreamError(f"Ollama error {r.status_code}", status_code=r.status_code, body=r.text)
        data = r.json()
        return data.get("response", "").strip()
