import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.encryption import CredentialVault
from app.db.base import Base
from app.gateway.types import ProviderConfig


class AIProvider(Base):
    """A configured vendor connection. ``api_key`` holds vault ciphertext only."""

    __tablename__ = "ai_providers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    temperature: Mapped[float] = mapped_column(Float, nullable=False, default=0.7)
    max_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    advanced_settings: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def set_api_key(self, value: str, vault: CredentialVault) -> None:
        """Store a key, encrypting plaintext and keeping existing ciphertext as-is."""
        self.api_key = vault.ingest(value) or None

    def to_config(self) -> ProviderConfig:
        return ProviderConfig(
            provider_type=self.provider_type,
            encrypted_key=self.api_key or "",
            model=self.model or "",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            system_prompt=self.system_prompt or "",
            advanced_settings=dict(self.advanced_settings or {}),
            is_active=self.is_active,
        )
