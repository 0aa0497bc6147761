"""
Tests for the profile repository and the aggregator against a real SQLite database
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from factories import ewkb_point
from partymarket.database import Base
from partymarket.domain.profiles.repository import ProfileRepository
from partymarket.domain.profiles.service import PublicProfileAggregator, PublicProfileService
from partymarket.models import Profile, ProfileLocation, Review, Service, YandexReviewsCache


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'profiles.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    now = datetime(2026, 5, 1, 12, 0)
    db = session_factory()
    db.add_all(
        [
            Profile(
                id="venue-1",
                slug="loft-party",
                display_name="Лофт Пати",
                category="venue",
                city="Санкт-Петербург",
                is_published=True,
                details={"reviews_source": "yandex", "tags": ["лофт"]},
            ),
            Profile(id="animator-1", slug="clown", category="animator", is_published=True, rating=4.1),
            Profile(id="draft-1", slug="draft", category="venue", is_published=False),
            ProfileLocation(
                id="loc-1",
                profile_id="venue-1",
                city="Санкт-Петербург",
                address="Невский пр., 1",
                geo_location=ewkb_point(59.9386, 30.3141),
                is_main=True,
                active=True,
            ),
            ProfileLocation(id="loc-2", profile_id="venue-1", city="Санкт-Петербург", active=False),
            Service(id="s-1", profile_id="venue-1", price=2000, photos=["old.jpg"], created_at=now - timedelta(days=2)),
            Service(id="s-2", profile_id="venue-1", price=1500, photos=["new.jpg"], created_at=now),
            Service(id="s-3", profile_id="venue-1", price=100, is_additional=True, created_at=now),
            Service(id="s-4", profile_id="venue-1", price=50, is_active=False, created_at=now),
            Review(id="r-1", profile_id="animator-1", rating=5, moderated=True, visible=True),
            Review(id="r-2", profile_id="animator-1", rating=4, moderated=True, visible=True),
            Review(id="r-3", profile_id="animator-1", rating=1, moderated=False, visible=True),
            Review(id="r-4", profile_id="animator-1", rating=1, moderated=True, visible=False),
            YandexReviewsCache(id="y-1", profile_location_id="loc-1", rating=4.7, review_count=120),
            YandexReviewsCache(id="y-2", profile_location_id="loc-2", rating=2.0, review_count=900),
        ]
    )
    db.commit()
    db.close()
    return session_factory


class TestProfileRepository:
    def test_only_published_profiles_with_locations(self, seeded):
        db = seeded()
        try:
            profiles = ProfileRepository.get_published_profiles(db)
            ids = sorted(p.id for p in profiles)
            venue = next(p for p in profiles if p.id == "venue-1")
            location_ids = sorted(loc.id for loc in venue.locations)
        finally:
            db.close()

        assert ids == ["animator-1", "venue-1"]
        assert location_ids == ["loc-1", "loc-2"]

    def test_active_services_newest_first(self, seeded):
        db = seeded()
        try:
            rows = ProfileRepository.get_active_services(db, ["venue-1"])
        finally:
            db.close()

        assert [row.price for row in rows] == [1500, 2000]
        assert rows[0].photos == ["new.jpg"]

    def test_visible_reviews_only(self, seeded):
        db = seeded()
        try:
            rows = ProfileRepository.get_visible_reviews(db, ["animator-1"])
        finally:
            db.close()

        assert sorted(row.rating for row in rows) == [4, 5]

    def test_external_reviews_by_location(self, seeded):
        db = seeded()
        try:
            rows = ProfileRepository.get_external_reviews(db, ["loc-1"])
        finally:
            db.close()

        assert [(r.profile_location_id, r.rating, r.review_count) for r in rows] == [("loc-1", 4.7, 120)]

    def test_empty_id_lists_skip_queries(self, seeded):
        db = seeded()
        try:
            assert ProfileRepository.get_active_services(db, []) == []
            assert ProfileRepository.get_visible_reviews(db, []) == []
            assert ProfileRepository.get_external_reviews(db, []) == []
        finally:
            db.close()


class TestAggregationEndToEnd:
    @pytest.mark.asyncio
    async def test_listing_from_database(self, seeded):
        service = PublicProfileService(PublicProfileAggregator(seeded))

        profiles = {p["id"]: p for p in await service.get_public_profiles()}

        assert set(profiles) == {"venue-1", "animator-1"}

        venue = profiles["venue-1"]
        assert venue["price_from"] == 1500
        assert venue["service_photos"] == ["new.jpg", "old.jpg"]
        # Inactive location's Yandex snapshot is ignored
        assert venue["rating"] == 4.7
        assert venue["reviews"] == 120
        assert venue["lat"] == pytest.approx(59.9386)
        assert venue["lng"] == pytest.approx(30.3141)
        assert venue["city"] == "Санкт-Петербург, Невский пр., 1"
        assert [loc["id"] for loc in venue["locations"]] == ["loc-1"]

        animator = profiles["animator-1"]
        assert animator["rating"] == 4.5
        assert animator["reviews"] == 2
        assert animator["lat"] is None
        assert animator["locations"] == []
