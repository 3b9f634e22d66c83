"""Vision captions for rendered PDF pages and crawled images.

All callers share one ImageCaptioner, whose gate caps concurrent vision calls
independently of how many ingestion tasks are running.
"""

import asyncio
import base64
import logging
from collections.abc import Callable

import openai
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_incrementing

from ..config import RAGConfig
from .rasterizer import downscale_png

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an assistant that describes images, figures and tables from documents in {language}. "
    "Be brief and precise. Only state facts you can see. Transcribe visible text when relevant."
)
USER_INSTRUCTION = "Describe the image briefly. Include visible text when needed."

ClientFactory = Callable[[str], AsyncOpenAI]

# Transport errors back off 1s, 3s, 5s...; timeouts and other failures 0.4s, 1.0s, 1.6s...
_TRANSPORT_WAIT = wait_incrementing(start=1, increment=2)
_SHORT_WAIT = wait_incrementing(start=0.4, increment=0.6)


def caption_backoff(retry_state) -> float:
    if isinstance(retry_state.outcome.exception(), openai.APIConnectionError):
        return _TRANSPORT_WAIT(retry_state)
    return _SHORT_WAIT(retry_state)


def describe_error(error: BaseException | None, timeout: float) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"timed out after {timeout}s"
    if isinstance(error, openai.APIConnectionError):
        return f"HTTP error: {error}"
    return f"unexpected error: {error}"


class ImageCaptioner:
    """Retrying, rate-gated wrapper around a vision model."""

    def __init__(self, config: RAGConfig, client_factory: ClientFactory | None = None):
        """Initialize the captioner.

        Args:
            config: Captioning settings (enable flag, width, timeout, retries, concurrency)
            client_factory: Builds a client for an API key; defaults to AsyncOpenAI
                with SDK retries disabled (retries happen here)
        """
        self.config = config
        self._gate = asyncio.Semaphore(config.caption_max_concurrency)
        self._client_factory = client_factory or self._default_client
        self._clients: dict[str, AsyncOpenAI] = {}

    def _default_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, base_url=self.config.openai_base_url, max_retries=0)

    def _client(self, api_key: str) -> AsyncOpenAI:
        if api_key not in self._clients:
            self._clients[api_key] = self._client_factory(api_key)
        return self._clients[api_key]

    def build_system_prompt(self, site: str | None = None, task_hint: str | None = None) -> str:
        system = SYSTEM_INSTRUCTION.format(language=self.config.caption_language)
        if site and site.strip():
            system += f" The context of the website is: {site}."
        if task_hint and task_hint.strip():
            system += f" Task: {task_hint}."
        return system

    async def describe(
        self,
        image_bytes: bytes,
        api_key: str | None = None,
        site: str | None = None,
        task_hint: str | None = None,
    ) -> str:
        """Caption an image.

        Returns an empty string when captioning is disabled, when no API key is
        available, when the provider answers with an error status, or when all
        attempts fail. Cancellation of the calling task is not swallowed.

        Args:
            image_bytes: PNG/JPEG bytes
            api_key: Provider key (falls back to the configured key)
            site: Optional site/scope context for the model
            task_hint: Optional task description, e.g. page number and page text

        Returns:
            Caption text or ""
        """
        if not self.config.image_captions:
            return ""

        api_key = api_key or self.config.openai_api_key
        if not api_key:
            logger.info("[CAPTION] No API key available, skipping caption")
            return ""

        async with self._gate:
            image_bytes = await asyncio.to_thread(downscale_png, image_bytes, self.config.caption_max_width)
            system = self.build_system_prompt(site, task_hint)

            attempts = self.config.caption_max_retries + 1
            timeout = self.config.caption_timeout_seconds
            retrying = AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=caption_backoff,
                retry=retry_if_exception_type(Exception),
                before_sleep=lambda state: logger.warning(
                    f"[CAPTION] Attempt {state.attempt_number}/{attempts} failed "
                    f"({describe_error(state.outcome.exception(), timeout)}), retrying in {state.next_action.sleep:.1f}s"
                ),
                sleep=asyncio.sleep,
            )

            try:
                async for attempt in retrying:
                    with attempt:
                        return await asyncio.wait_for(self._describe_once(image_bytes, api_key, system), timeout=timeout)
            except RetryError as e:
                error = describe_error(e.last_attempt.exception(), timeout)
                logger.warning(f"[CAPTION] Giving up after {attempts} attempts: {error}")
                return ""

    async def _describe_once(self, image_bytes: bytes, api_key: str, system: str) -> str:
        b64 = base64.b64encode(image_bytes).decode("ascii")
        messages = [
            {"role": "system", "content": system},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_INSTRUCTION},
                    {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64}"}},
                ],
            },
        ]

        try:
            response = await self._client(api_key).chat.completions.create(
                model=self.config.vision_model,
                messages=messages,
                temperature=0.2,
                max_tokens=200,
            )
        except openai.APIStatusError as e:
            logger.warning(f"[CAPTION] HTTP {e.status_code}: {e.response.text if e.response is not None else e.body}")
            return ""

        if not response.choices:
            return ""
        content = response.choices[0].message.content
        return content.strip() if content else ""
