"""Gemini extraction client using the google-genai SDK."""
from typing import Optional

from google import genai
from google.genai import errors, types

from ..utils.exceptions import LLMError, RetryableLLMError
from ..utils.logger import get_logger
from ..utils.retry import retry_with_backoff

logger = get_logger()


class GeminiExtractionClient:
    """Sends one chunk plus its instructions to Gemini and returns the raw JSON text."""

    def __init__(self, api_key: str, model_name: str = "gemini-2.5-flash",
                 timeout_seconds: float = 30.0, temperature: float = 0.0,
                 max_output_tokens: int = 8192, max_retries: int = 3,
                 initial_delay: float = 1.0, backoff_factor: float = 2.0,
                 client: Optional[genai.Client] = None):
        """
        Initialize client.

        Args:
            api_key: Google AI API key
            model_name: Gemini model to call
            timeout_seconds: Per-request timeout
            temperature: Sampling temperature
            max_output_tokens: Output token cap
            max_retries: Attempts for retryable failures
            initial_delay: First backoff delay in seconds
            backoff_factor: Backoff multiplier
            client: Preconfigured genai.Client
        """
        if client is None:
            if not api_key:
                raise LLMError("Gemini API key is required")
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
            )
        self.client = client
        self.model_name = model_name
        self.generation_config = types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        self._generate = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=initial_delay,
            backoff_factor=backoff_factor,
        )(self._generate_once)

        logger.info(f"Gemini extraction client initialized with {self.model_name}")

    def extract(self, prompt_context: str, chunk_text: str) -> str:
        """
        Run extraction for one chunk.

        Args:
            prompt_context: Instructions and output contract
            chunk_text: Statement text of the chunk

        Returns:
            Raw response text, expected to be a JSON object

        Raises:
            LLMError: On non-retryable failures or an empty response
            RetryableLLMError: When retries are exhausted
        """
        return self._generate(prompt_context, chunk_text)

    def _generate_once(self, prompt_context: str, chunk_text: str) -> str:
        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[prompt_context, chunk_text],
                config=self.generation_config,
            )
        except errors.ClientError as e:
            if e.code == 429:
                raise RetryableLLMError(f"Gemini rate limited: {e}")
            raise LLMError(f"Gemini rejected request: {e}")
        except errors.APIError as e:
            raise RetryableLLMError(f"Gemini server error: {e}")
        except Exception as e:
            raise RetryableLLMError(f"Gemini request failed: {e}")

        if not response.text:
            raise LLMError("Gemini returned empty response")

        logger.debug(f"Gemini response ({len(response.text)} chars): {response.text[:200]}")
        return response.text
