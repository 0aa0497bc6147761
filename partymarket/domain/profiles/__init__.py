"""Profiles domain - Public profile listing"""

from .router import router
from .service import PublicProfileAggregator, PublicProfileService

__all__ = ["router", "PublicProfileAggregator", "PublicProfileService"]
