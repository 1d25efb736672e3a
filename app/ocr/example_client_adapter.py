"""Example completion client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseCompletionClient and register the provider in OcrProviderFactory.
"""

import json
from typing import ClassVar

from app.ocr.client_base import BaseCompletionClient, UserContent


class ExampleClientAdapter(BaseCompletionClient):
    """Example adapter that returns a fixed, well-formed extraction.

    No network calls. Useful for local development and tests.
    """

    DEFAULT_RESPONSE: ClassVar[dict[str, object]] = {
        "raw_text": "",
        "fields": [
            {"name": "business_name", "value": "AGRO EXEMPLU SRL", "confidence": 92},
            {"name": "cui", "value": "RO18547290", "confidence": 88},
            {"name": "trade_register_number", "value": "J40/1234/2020", "confidence": 95},
        ],
        "warnings": [],
    }

    def __init__(self, response: dict[str, object] | None = None) -> None:
        self._response = response if response is not None else self.DEFAULT_RESPONSE

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
        _ = model, temperature, system_prompt, user_content, json_schema, timeout_seconds
        return json.dumps(self._response)
