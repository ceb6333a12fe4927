"""Streaming transport for OpenAI-compatible chat completion endpoints."""

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import openai
from openai import AsyncOpenAI

from .errors import TransportError

logger = logging.getLogger(__name__)


class LLMClient:
    """Opens a streamed chat completion and hands back the raw body bytes.

    The response is read undecoded so that frame parsing stays under our
    control; the SDK is only used for auth, retries and status handling.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 120.0,
        max_retries: int = 2,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            http_client=http_client,
        )

    async def stream(self, body: Dict[str, Any]) -> AsyncIterator[bytes]:
        """Yield body chunks of a ``stream=True`` completion request.

        Raises:
            TransportError: on connection failures and non-2xx responses.
        """
        request = {**body, "stream": True}
        try:
            async with self.client.chat.completions.with_streaming_response.create(
                **request
            ) as response:
                async for chunk in response.iter_bytes():
                    yield chunk
        except openai.APIStatusError as e:
            logger.error(f"LLM request failed with status {e.status_code}")
            raise TransportError(f"LLM error: {e.status_code}", status_code=e.status_code) from e
        except openai.APIError as e:
            logger.error(f"LLM request failed: {e}")
            raise TransportError(f"LLM error: {e}") from e
        except httpx.HTTPError as e:
            # Failures while reading the body are not wrapped by the SDK
            logger.error(f"LLM stream interrupted: {e}")
            raise TransportError(f"LLM error: {e}") from e

    async def close(self) -> None:
        await self.client.close()
