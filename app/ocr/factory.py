from typing import ClassVar

from app.config.settings import Settings
from app.ocr.base import BaseOcrProvider
from app.ocr.example_client_adapter import ExampleClientAdapter
from app.ocr.llm_provider import LlmOcrProvider
from app.ocr.openai_client_adapter import OpenAIClientAdapter
from app.ocr.pattern_provider import PatternOcrProvider
from app.pdf.base import BasePdfExtractor
from app.pdf.factory import PdfExtractorFactory


class OcrProviderFactory:
    """Creates the configured OCR provider."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "openrouter": "https://openrouter.ai/api/v1",
        "groq": "https://api.groq.com/openai/v1",
        "together": "https://api.together.xyz/v1",
        "ollama": "http://localhost:11434/v1",
    }

    @classmethod
    def create(
        cls,
        settings: Settings,
        pdf_extractor: BasePdfExtractor | None = None,
    ) -> BaseOcrProvider:
        """Create a configured provider from application settings."""
        provider = settings.ocr_provider.lower()
        pdf_extractor = pdf_extractor or PdfExtractorFactory.create(settings)
        if provider == "pattern":
            return PatternOcrProvider(pdf_extractor)
        if provider == "example":
            return LlmOcrProvider(
                client=ExampleClientAdapter(),
                model="example",
                pdf_extractor=pdf_extractor,
                name="example",
            )
        base_url = cls._resolve_base_url(provider, settings)
        client = OpenAIClientAdapter(
            api_key=settings.ocr_api_key,
            timeout_seconds=settings.ocr_timeout_seconds,
            base_url=base_url,
        )
        return LlmOcrProvider(
            client=client,
            model=settings.ocr_model_name,
            pdf_extractor=pdf_extractor,
            name=provider,
            temperature=settings.ocr_temperature,
            render_dpi=settings.ocr_render_dpi,
            max_pages=settings.ocr_max_pages,
        )

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        configured = settings.ocr_base_url.strip()
        if provider == "openai":
            return configured or None
        if provider == "openai_compatible":
            if not configured:
                raise ValueError(
                    "ocr_base_url is required for ocr_provider=openai_compatible"
                )
            return configured
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return configured or default_base_url
        supported = [
            "example",
            "pattern",
            "openai",
            "openai_compatible",
            *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS),
        ]
        raise ValueError(f"Unknown OCR provider '{provider}'. Choose from: {supported}")
