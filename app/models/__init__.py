from app.models.ai_provider import AIProvider
from app.models.message import Message

__all__ = [
    "AIProvider",
    "Message",
]
