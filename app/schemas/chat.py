"""Chat schemas for the streaming relay."""

from pydantic import BaseModel, ConfigDict, field_validator


class ChatMessage(BaseModel):
    """One message as sent by the client (Ollama field names)."""
    model_config = ConfigDict(extra="ignore")

    role: str = "user"
    content: str = ""
    images: list[str] | None = None  # base64, optionally as data: URLs

    @field_validator("images")
    @classmethod
    def _strip_data_url(cls, images: list[str] | None) -> list[str] | None:
        if not images:
            return None
        return [img.split(",", 1)[1] if img.startswith("data:") and "," in img else img for img in images]

    def has_payload(self) -> bool:
        return bool(self.content.strip()) or bool(self.images)


class ChatRequest(BaseModel):
    """Inbound chat request. ``model`` is checked by the relay, not the schema."""
    model_config = ConfigDict(extra="ignore")

    model: str | None = None
    messages: list[ChatMessage] = []


class ChatOptions(BaseModel):
    """Sampling parameters forwarded upstream."""
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.9
