"""Recommendation read path."""

from .models import ListingRecommendation, MatchDetail, RefreshMode, StudentRecommendation
from .service import RecommendationService, listing_rank_key

__all__ = [
    "RecommendationService",
    "RefreshMode",
    "ListingRecommendation",
    "StudentRecommendation",
    "MatchDetail",
    "listing_rank_key",
]
