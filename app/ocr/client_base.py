from abc import ABC, abstractmethod

UserContent = str | list[dict[str, object]]


class BaseCompletionClient(ABC):
    """Contract for provider-specific chat-completion clients."""

    @abstractmethod
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
        """Return provider response as plain text."""
