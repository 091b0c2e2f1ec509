import logging
import os
from typing import Optional

from groq import APIConnectionError, APIStatusError, APITimeoutError, Groq

from teamlens.errors import UpstreamError

logger = logging.getLogger(__name__)


class GroqClient:
    def __init__(
        self,
        api_key: str,
        model: str = None,
        temperature: float = 0.1,
        max_tokens: int = 1000,
        timeout: float = 30.0,
        client=None,
    ):
        self.client = client or Groq(api_key=api_key, timeout=timeout, max_retries=0)
        # Provided arg, then env override, then a default
        env_model = os.getenv("GROQ_MODEL")
        self.model = model or env_model or "llama-3.1-8b-instant"
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings):
        if not settings.groq_api_key:
            raise UpstreamError("GROQ_API_KEY is not configured")
        return cls(
            settings.groq_api_key,
            model=settings.groq_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.groq_max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
            )
        except APIStatusError as e:
            body = e.response.text if e.response is not None else ""
            logger.error("Groq API error: status=%s body=%s", e.status_code, body)
            raise UpstreamError(f"Groq API error {e.status_code}", status_code=e.status_code, body=body)
        except APITimeoutError as e:
            logger.error("Groq API timed out: %s", e)
            raise UpstreamError("Groq API timed out")
        except APIConnectionError as e:
            logger.error("Groq API unreachable: %s", e)
            raise UpstreamError("Groq API unreachable")
        content = resp.choices[0].message.content
        return (content or "").strip()
