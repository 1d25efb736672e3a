"""OCR through a chat-completion model with vision input."""

import base64
import json
from pathlib import Path

from app.documents.document_types import get_document_type_info
from app.documents.models import DocumentType
from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.client_base import BaseCompletionClient, UserContent
from app.ocr.exceptions import (
    MalformedProviderOutputError,
    ProviderError,
    UnsupportedContentError,
)
from app.ocr.models import ProviderRawOutput
from app.ocr.prompt_loader import load_json_schema, load_prompt_template
from app.pdf.base import BasePdfExtractor
from app.pdf.exceptions import PdfExtractionError

_SYSTEM_PROMPT = (
    "You are a careful document transcription assistant. "
    "You only report what is printed on the document."
)
_IMAGE_PLACEHOLDER = "(the document is attached as images)"


class LlmOcrProvider(BaseOcrProvider):
    """Reads documents with a multimodal model behind ``BaseCompletionClient``.

    Images are sent as base64 data URLs. PDFs are sent as their text layer
    when they have one and as rendered page images otherwise. Plain text is
    sent as is.
    """

    def __init__(
        self,
        *,
        client: BaseCompletionClient,
        model: str,
        pdf_extractor: BasePdfExtractor,
        name: str = "openai",
        temperature: float = 0.0,
        render_dpi: int = 150,
        max_pages: int = 3,
        prompt_template_path: Path | None = None,
        json_schema_path: Path | None = None,
    ) -> None:
        self.name = name
        self._client = client
        self._model = model
        self._pdf_extractor = pdf_extractor
        self._temperature = max(0.0, min(0.2, temperature))
        self._render_dpi = render_dpi
        self._max_pages = max_pages
        self._prompt_template = load_prompt_template(prompt_template_path)
        self._json_schema = load_json_schema(json_schema_path)
        self._json_schema_dict = json.loads(self._json_schema)

    def recognize(
        self,
        file_bytes: bytes,
        *,
        mime_type: str,
        document_type: DocumentType,
        timeout_seconds: float,
    ) -> ProviderRawOutput:
        text_layer, images, image_mime = self._prepare_input(file_bytes, mime_type)
        prompt = self._build_prompt(document_type, text_layer or _IMAGE_PLACEHOLDER)
        user_content = self._build_user_content(prompt, images, image_mime)
        Log.debug(f"OCR prompt for {document_type}:\n{prompt}")

        raw_response = self._client.create_chat_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=_SYSTEM_PROMPT,
            user_content=user_content,
            json_schema=self._json_schema_dict,
            timeout_seconds=timeout_seconds,
        )
        Log.debug(f"OCR raw response:\n{raw_response}")

        output = self._parse_response(raw_response)
        if text_layer:
            output = ProviderRawOutput(
                raw_text=text_layer,
                fields=output.fields,
                confidences=output.confidences,
                model_version=output.model_version,
                warnings=output.warnings,
            )
        Log.info(f"{self.name} returned {len(output.fields)} fields for {document_type}")
        return output

    def _prepare_input(
        self, file_bytes: bytes, mime_type: str
    ) -> tuple[str, list[bytes], str]:
        mime_type = mime_type.lower()
        if mime_type.startswith("image/"):
            return "", [file_bytes], mime_type
        if mime_type == "text/plain":
            return file_bytes.decode("utf-8", errors="replace").strip(), [], ""
        if mime_type == "application/pdf":
            try:
                text = self._pdf_extractor.extract(file_bytes)
                if text:
                    return text, [], ""
                Log.info("PDF has no text layer, rendering pages for OCR")
                pages = self._pdf_extractor.render_pages(
                    file_bytes, dpi=self._render_dpi, max_pages=self._max_pages
                )
            except PdfExtractionError as exc:
                raise ProviderError(f"Could not read PDF: {exc}") from exc
            if not pages:
                raise ProviderError("PDF has no pages")
            return "", pages, "image/png"
        raise UnsupportedContentError(f"{self.name} cannot read {mime_type}")

    def _build_prompt(self, document_type: DocumentType, document_text: str) -> str:
        info = get_document_type_info(document_type)
        return self._prompt_template.format(
            document_type_name=info.name_en,
            document_type_name_ro=info.name_ro,
            expected_fields=", ".join(info.expected_fields),
            json_schema=self._json_schema,
            document_text=document_text,
        )

    @staticmethod
    def _build_user_content(prompt: str, images: list[bytes], image_mime: str) -> UserContent:
        if not images:
            return prompt
        parts: list[dict[str, object]] = [{"type": "text", "text": prompt}]
        for image in images:
            encoded = base64.b64encode(image).decode("ascii")
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image_mime};base64,{encoded}"},
                }
            )
        return parts

    def _parse_response(self, raw: str) -> ProviderRawOutput:
        parsed = self._parse_json(raw)
        fields: dict[str, object] = {}
        confidences: dict[str, object] = {}

        raw_fields = parsed.get("fields")
        if isinstance(raw_fields, list):
            for index, item in enumerate(raw_fields):
                if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                    raise MalformedProviderOutputError(
                        f"Field at index {index} must be an object with a 'name'"
                    )
                fields[item["name"]] = item.get("value")
                confidences[item["name"]] = item.get("confidence")
        elif isinstance(raw_fields, dict):
            fields = dict(raw_fields)
            raw_confidences = parsed.get("confidences")
            if isinstance(raw_confidences, dict):
                confidences = dict(raw_confidences)
        else:
            raise MalformedProviderOutputError("'fields' must be a list or an object")

        raw_text = parsed.get("raw_text")
        warnings = parsed.get("warnings")
        return ProviderRawOutput(
            raw_text=raw_text if isinstance(raw_text, str) else "",
            fields=fields,
            confidences=confidences,
            model_version=self._model,
            warnings=[str(w) for w in warnings] if isinstance(warnings, list) else [],
        )

    @staticmethod
    def _parse_json(raw: str) -> dict[str, object]:
        cleaned = raw.strip()
        if cleaned.startswith("```"):
            lines = cleaned.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            cleaned = "\n".join(lines)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise MalformedProviderOutputError(f"Invalid JSON response: {exc}") from exc

        if not isinstance(parsed, dict):
            raise MalformedProviderOutputError("JSON response must be an object")
        return parsed
