"""Profile service - Aggregation and caching of the public profile listing"""

import asyncio
import logging
import time
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ...cache import PublicProfilesCache
from ...config import (
    DEFAULT_VENUE_LAT,
    DEFAULT_VENUE_LNG,
    PUBLIC_PROFILES_CACHE_TTL_SECONDS,
)
from ...database import SessionLocal
from ...utils.geo import normalize_coords, parse_geo_location
from .repository import ProfileRepository
from .schemas import ProfileListItem, ProfileLocationItem

logger = logging.getLogger(__name__)

VENUE_CATEGORY = "venue"
REVIEWS_SOURCE_YANDEX = "yandex"
MAX_SERVICE_PHOTOS = 5
DEFAULT_PROFILE_NAME = "Без названия"
DEFAULT_PRICE_RANGE = "По запросу"


# ============================================================================
# REDUCERS
# ============================================================================


def round_rating(value: float) -> float:
    """One decimal, ties rounded up (4.25 -> 4.3)"""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def min_service_prices(services) -> dict[str, float]:
    """Cheapest priced non-additional service per profile"""
    prices: dict[str, float] = {}
    for service in services:
        if service.is_additional or not service.price:
            continue
        existing = prices.get(service.profile_id)
        if existing is None or service.price < existing:
            prices[service.profile_id] = service.price
    return prices


def collect_service_photos(services, limit: int = MAX_SERVICE_PHOTOS) -> dict[str, list[str]]:
    """First photo of each service, in query order, capped per profile"""
    photos: dict[str, list[str]] = defaultdict(list)
    for service in services:
        if not service.photos:
            continue
        profile_photos = photos[service.profile_id]
        if len(profile_photos) < limit:
            profile_photos.append(service.photos[0])
    return dict(photos)


def aggregate_internal_reviews(reviews) -> dict[str, dict]:
    """Mean rating (1 decimal) and count of visible reviews per profile"""
    totals: dict[str, list] = {}
    for review in reviews:
        entry = totals.setdefault(review.profile_id, [0.0, 0])
        entry[0] += review.rating
        entry[1] += 1

    result = {}
    for profile_id, (rating_sum, count) in totals.items():
        average = rating_sum / count if count else None
        result[profile_id] = {
            "rating": round_rating(average) if average else None,
            "count": count,
        }
    return result


def build_location_owner_map(profiles) -> dict[str, str]:
    return {
        location.id: profile.id
        for profile in profiles
        for location in (profile.locations or [])
    }


def aggregate_external_reviews(rows, location_owners: dict[str, str]) -> dict[str, dict]:
    """
    Review-count weighted Yandex rating (1 decimal) and total count per profile.

    Rows whose location has no known owner are skipped.
    """
    totals: dict[str, list] = {}
    for row in rows:
        profile_id = location_owners.get(row.profile_location_id)
        if profile_id is None:
            continue
        entry = totals.setdefault(profile_id, [0.0, 0])
        if row.rating and row.review_count:
            entry[0] += row.rating * row.review_count
            entry[1] += row.review_count

    result = {}
    for profile_id, (weighted_sum, total_count) in totals.items():
        average = weighted_sum / total_count if total_count else None
        result[profile_id] = {
            "rating": round_rating(average) if average else None,
            "count": total_count,
        }
    return result


def pick_display_rating(
    profile, internal: Optional[dict], external: Optional[dict]
) -> tuple[float, int]:
    """
    Choose which aggregate a profile card shows.

    "yandex" profiles prefer the external aggregate, then the internal one;
    everything else uses the internal aggregate. The stored profile rating
    is the last resort.
    """
    details = profile.details or {}
    reviews_source = details.get("reviews_source") or "internal"

    rating = profile.rating or 0
    count = profile.reviews_count or 0

    has_internal = internal is not None and internal["rating"] is not None
    has_external = external is not None and external["rating"] is not None

    if reviews_source == REVIEWS_SOURCE_YANDEX and has_external:
        return external["rating"], external["count"]
    if has_internal:
        return internal["rating"], internal["count"]
    return rating, count


# ============================================================================
# LOCATIONS
# ============================================================================


def pick_main_location(locations: list):
    """First active main location, else first active, else the first one"""
    for location in locations:
        if location.is_main and location.active:
            return location
    for location in locations:
        if location.active:
            return location
    return locations[0] if locations else None


def resolve_location_point(location, fallback_city: Optional[str]) -> tuple[float, float]:
    point = parse_geo_location(location.geo_location)
    lat, lng = point if point else (DEFAULT_VENUE_LAT, DEFAULT_VENUE_LNG)
    return normalize_coords(lat, lng, location.city or fallback_city)


def format_profile(
    profile,
    min_prices: dict[str, float],
    service_photos: dict[str, list[str]],
    internal_reviews: dict[str, dict],
    external_reviews: dict[str, dict],
) -> dict[str, Any]:
    details = profile.details or {}
    category = profile.category or VENUE_CATEGORY
    is_venue = category == VENUE_CATEGORY
    locations = list(profile.locations or [])

    rating, reviews_count = pick_display_rating(
        profile, internal_reviews.get(profile.id), external_reviews.get(profile.id)
    )

    # Only venues are placed on the map
    lat: Optional[float] = DEFAULT_VENUE_LAT if is_venue else None
    lng: Optional[float] = DEFAULT_VENUE_LNG if is_venue else None
    city_label = profile.city or ""
    main_location = pick_main_location(locations) if is_venue else None

    if main_location:
        if main_location.city:
            city_label = (
                f"{main_location.city}, {main_location.address}"
                if main_location.address
                else main_location.city
            )
        lat, lng = resolve_location_point(main_location, profile.city)

    venue_type = None
    if main_location is not None:
        venue_type = (main_location.details or {}).get("venue_type")
    venue_type = venue_type or details.get("venue_type") or None

    location_items = []
    if is_venue:
        for location in locations:
            if not location.active:
                continue
            loc_lat, loc_lng = resolve_location_point(location, profile.city)
            location_items.append(
                ProfileLocationItem(
                    id=str(location.id),
                    address=location.address,
                    city=location.city,
                    lat=loc_lat,
                    lng=loc_lng,
                    is_main=bool(location.is_main),
                )
            )

    item = ProfileListItem(
        id=str(profile.id),
        name=profile.display_name or DEFAULT_PROFILE_NAME,
        slug=profile.slug,
        category=category,
        image=profile.main_photo or profile.cover_photo or None,
        rating=rating,
        reviews=reviews_count,
        priceRange=profile.price_range or DEFAULT_PRICE_RANGE,
        price_from=min_prices.get(profile.id) or None,
        tags=details.get("tags") or [],
        is_verified=bool(details.get("is_verified")),
        is_featured=bool(details.get("is_featured")),
        venue_type=venue_type,
        service_photos=service_photos.get(profile.id, []),
        locations=location_items,
        lat=lat,
        lng=lng,
        city=city_label,
        description=profile.bio or profile.description or "",
    )
    return item.model_dump()


# ============================================================================
# AGGREGATION
# ============================================================================


class PublicProfileAggregator:
    """Builds the public listing from profiles, services and both review sources"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        repo: Optional[ProfileRepository] = None,
    ):
        self.session_factory = session_factory
        self.repo = repo or ProfileRepository()

    async def _query(self, query: Callable, *args):
        """Run a blocking repository call in a worker thread with its own session"""

        def run():
            db = self.session_factory()
            try:
                return query(db, *args)
            finally:
                db.close()

        return await asyncio.to_thread(run)

    async def fetch_profiles(self) -> list[dict[str, Any]]:
        started_at = time.perf_counter()

        profiles = await self._query(self.repo.get_published_profiles)
        if not profiles:
            logger.info("No published profiles found")
            return []

        profile_ids = [p.id for p in profiles]
        location_ids = [
            location.id
            for p in profiles
            for location in (p.locations or [])
            if location.active
        ]

        external_query = (
            self._query(self.repo.get_external_reviews, location_ids)
            if location_ids
            else _resolved([])
        )
        services, reviews, external_rows = await asyncio.gather(
            self._query(self.repo.get_active_services, profile_ids),
            self._query(self.repo.get_visible_reviews, profile_ids),
            external_query,
        )

        min_prices = min_service_prices(services)
        service_photos = collect_service_photos(services)
        internal_reviews = aggregate_internal_reviews(reviews)
        external_reviews = aggregate_external_reviews(
            external_rows, build_location_owner_map(profiles)
        )

        formatted = [
            format_profile(p, min_prices, service_photos, internal_reviews, external_reviews)
            for p in profiles
        ]

        elapsed = (time.perf_counter() - started_at) * 1000
        logger.info(
            f"📊 Aggregated {len(formatted)} public profiles in {elapsed:.0f}ms "
            f"(services={len(services)}, reviews={len(reviews)}, yandex={len(external_rows)})"
        )
        return formatted


async def _resolved(value):
    return value


# ============================================================================
# SERVICE
# ============================================================================


class PublicProfileService:
    """Service layer for the public profile listing"""

    def __init__(
        self,
        aggregator: Optional[PublicProfileAggregator] = None,
        ttl_seconds: float = PUBLIC_PROFILES_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.aggregator = aggregator or PublicProfileAggregator()
        self.cache = PublicProfilesCache(
            self.aggregator.fetch_profiles, ttl_seconds=ttl_seconds, clock=clock
        )

    async def get_public_profiles(self, force_refresh: bool = False) -> list[dict[str, Any]]:
        return await self.cache.get(force_refresh=force_refresh)

    @staticmethod
    def filter_profiles(
        profiles: list[dict[str, Any]],
        city: Optional[str] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Filter a listing without touching the cached list"""
        result = profiles
        if city:
            city_prefix = city.strip().lower()
            result = [p for p in result if (p.get("city") or "").lower().startswith(city_prefix)]
        if category:
            result = [p for p in result if p.get("category") == category]
        if offset or limit is not None:
            end = offset + limit if limit is not None else None
            result = result[offset:end]
        return list(result)

    def stats(self) -> dict:
        return self.cache.stats()
