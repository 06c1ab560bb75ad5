"""
LLM access. Handlers only see the LLMClient interface; OllamaClient is the
production implementation.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from app.utils.config import AgentSettings
from app.utils.exceptions import ModelError, RateLimitError, retry_with_logging
from app.utils.logging_config import get_logger

logger = get_logger(__name__)


class LLMClient(ABC):
    """Text completion capability"""

    model: str = "unknown"

    @abstractmethod
    async def generate(self, prompt: str, system: Optional[str] = None,
                       temperature: float = 0.2, max_tokens: Optional[int] = None) -> str:
        """Return the completion text or raise ModelError / RateLimitError"""


class OllamaClient(LLMClient):
    def __init__(self, base_url: str, model: str, timeout: float = 60.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _generate_sync(self, prompt: str, system: Optional[str], temperature: float,
                       max_tokens: Optional[int]) -> str:
        options: Dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens
        body: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "options": options,
            "stream": False,
        }
        if system:
            body["system"] = system

        try:
            resp = self.session.post(f"{self.base_url}/api/generate", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise ModelError(f"LLM request failed: {e}", model_name=self.model, cause=e)

        if resp.status_code == 429:
            raise RateLimitError("LLM quota exceeded", details={"model_name": self.model})
        try:
            resp.raise_for_status()
            return resp.json().get("response", "") or ""
        except (requests.HTTPError, ValueError) as e:
            raise ModelError(f"LLM returned an unusable response: {e}", model_name=self.model, cause=e)

    @retry_with_logging(max_attempts=2, backoff_factor=0.5, exceptions=(ModelError,), logger=logger)
    async def generate(self, prompt: str, system: Optional[str] = None,
                       temperature: float = 0.2, max_tokens: Optional[int] = None) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._generate_sync, prompt, system, temperature, max_tokens)


def build_llm(settings: AgentSettings) -> Optional[LLMClient]:
    if settings.llm_provider == "none":
        logger.info("LLM disabled; handlers will use deterministic fallbacks")
        return None
    logger.info(f"Using Ollama model {settings.llm_model} at {settings.ollama_base_url}")
    return OllamaClient(settings.ollama_base_url, settings.llm_model, timeout=settings.llm_timeout)


def safe_json(s: str, fallback: Any):
    """Parse the outermost {...} block of an LLM reply, or return fallback"""
    try:
        start = s.find("{")
        end = s.rfind("}")
        if start >= 0 and end > start:
            return json.loads(s[start:end + 1])
        return fallback
    except (ValueError, AttributeError):
        return fallback
