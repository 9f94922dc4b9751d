"""Agent profile models and loader exports."""

from .loader import DEFAULT_PROFILE_DIR, ProfileLoadError, ProfileLoader, load_profiles
from .models import ROLES, AgentProfile, ChecklistItem

__all__ = [
    "AgentProfile",
    "ChecklistItem",
    "DEFAULT_PROFILE_DIR",
    "ProfileLoadError",
    "ProfileLoader",
    "ROLES",
    "load_profiles",
]
