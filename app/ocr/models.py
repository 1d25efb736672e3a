from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProviderRawOutput:
    """What an OCR provider returned, before normalization.

    Field names and confidence scales are whatever the provider used; the
    field normalizer maps them onto canonical names.
    """

    raw_text: str = ""
    fields: dict[str, object] = field(default_factory=dict)
    confidences: dict[str, object] = field(default_factory=dict)
    model_version: str | None = None
    warnings: list[str] = field(default_factory=list)
