import asyncio
from typing import Any, Dict, List, Optional, Union

from google import genai
from google.genai import types

from billtracker.core.exceptions import APIClientError, APITimeoutError
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


class GeminiClient:
    """Wrapper for Google Gemini API client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: int = 120,
        max_retries: int = 1,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model name to use
            timeout: Per-attempt timeout in seconds
            max_retries: Total attempts per call; 1 disables retrying
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max(1, max_retries)

        try:
            self.client = genai.Client(api_key=self.api_key)
            LOGGER.info(f"Initialized Gemini client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    @staticmethod
    def image_part(data: bytes, mime_type: str = "image/png") -> types.Part:
        """Inline image part for a multimodal request."""
        return types.Part.from_bytes(data=data, mime_type=mime_type)

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, types.Part]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using Gemini model.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, etc.)

        Returns:
            Generated text response, empty if the model returned no text

        Raises:
            APITimeoutError: If the last attempt timed out
            APIClientError: If generation fails
        """
        config = types.GenerateContentConfig(temperature=0.0)

        if generation_config:
            if "temperature" in generation_config:
                config.temperature = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                config.max_output_tokens = generation_config["max_output_tokens"]
            if "response_mime_type" in generation_config:
                config.response_mime_type = generation_config["response_mime_type"]

        if system_instruction:
            config.system_instruction = system_instruction

        for attempt in range(self.max_retries):
            try:
                response = await asyncio.wait_for(
                    self.client.aio.models.generate_content(
                        model=self.model,
                        contents=contents,
                        config=config
                    ),
                    timeout=self.timeout,
                )

                if not response.text:
                    LOGGER.warning("Empty response from Gemini")
                    return ""

                return response.text

            except asyncio.TimeoutError as e:
                LOGGER.warning(
                    f"Gemini API timeout after {self.timeout}s (Attempt {attempt + 1}/{self.max_retries})"
                )
                if attempt == self.max_retries - 1:
                    raise APITimeoutError(
                        f"Gemini generation timed out after {self.timeout}s", original_error=e
                    )
            except Exception as e:
                LOGGER.warning(
                    f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt == self.max_retries - 1:
                    LOGGER.error(f"Gemini generation failed: {e}", exc_info=True)
                    raise APIClientError(f"Gemini generation failed: {e}", original_error=e)

            await asyncio.sleep(2 ** attempt)

        raise APIClientError("Gemini generation failed")
