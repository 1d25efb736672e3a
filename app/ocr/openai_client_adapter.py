import httpx
import openai

from app.ocr.client_base import BaseCompletionClient, UserContent
from app.ocr.exceptions import (
    MalformedProviderOutputError,
    ProviderNetworkError,
    ProviderTimeoutError,
)


class OpenAIClientAdapter(BaseCompletionClient):
    """Chat-completion client for OpenAI and OpenAI-compatible endpoints."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float,
        base_url: str | None = None,
    ) -> None:
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
            max_retries=0,
        )

    def create_chat_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_content: UserContent,
        json_schema: dict[str, object],
        timeout_seconds: float,
    ) -> str:
        try:
            response = self._client.chat.completions.create(
                model=model,
                temperature=temperature,
                timeout=timeout_seconds,
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "document_extraction",
                        "strict": True,
                        "schema": json_schema,
                    },
                },
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},  # type: ignore[misc]
                ],
            )
        except (openai.APITimeoutError, httpx.TimeoutException) as exc:
            raise ProviderTimeoutError(
                f"OCR provider timed out after {timeout_seconds}s: {exc}"
            ) from exc
        except (openai.APIConnectionError, httpx.ConnectError) as exc:
            raise ProviderNetworkError(f"OCR provider network error: {exc}") from exc
        except openai.APIError as exc:
            raise ProviderNetworkError(f"OCR provider API error: {exc}") from exc

        if not response.choices:
            raise MalformedProviderOutputError("OCR provider returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise MalformedProviderOutputError("OCR provider returned an empty response")
        return content
