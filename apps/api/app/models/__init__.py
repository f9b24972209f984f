"""Expose ORM models."""
from .usage import UserVoiceUsageDaily
from .voice_session import VoiceSessionRecord

__all__ = [
    "UserVoiceUsageDaily",
    "VoiceSessionRecord",
]
