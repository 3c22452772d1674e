from ember.models.core import User, Profile
from ember.models.capture import Capture, CaptureMethod, CaptureStatus, CapturePlatform
from ember.models.memory import Memory, MemoryCategory

__all__ = [
    "User", "Profile",
    "Capture", "CaptureMethod", "CaptureStatus", "CapturePlatform",
    "Memory", "MemoryCategory",
]

# Registers the tenant isolation session events alongside the models
from ember import tenant  # noqa: E402,F401
