import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_uuid():
    return str(uuid.uuid4())


class Profile(Base):
    """Vendor listing (venue, animator, photographer, ...)"""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    slug = Column(String(255), unique=True, index=True, nullable=True)
    display_name = Column(String(255), nullable=True)
    category = Column(String(50), nullable=True)  # venue, animator, photographer, ...
    city = Column(String(255), nullable=True)
    rating = Column(Float, nullable=True)  # Stored default shown when no reviews are aggregated
    reviews_count = Column(Integer, nullable=True)
    price_range = Column(String(100), nullable=True)
    cover_photo = Column(Text, nullable=True)
    main_photo = Column(Text, nullable=True)
    is_published = Column(Boolean, default=False, nullable=False, index=True)
    # tags, is_verified, is_featured, venue_type, reviews_source ("internal" | "yandex")
    details = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    locations = relationship(
        "ProfileLocation", back_populates="profile", order_by="ProfileLocation.id"
    )
    services = relationship("Service", back_populates="profile")
    reviews = relationship("Review", back_populates="profile")


class ProfileLocation(Base):
    __tablename__ = "profile_locations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    city = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    # PostGIS point as returned by the driver: EWKB hex, WKT, or GeoJSON
    geo_location = Column(Text, nullable=True)
    is_main = Column(Boolean, default=False, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    details = Column(JSON, nullable=True)  # venue_type

    profile = relationship("Profile", back_populates="locations")
    yandex_reviews = relationship("YandexReviewsCache", back_populates="location")


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    title = Column(String(255), nullable=True)
    price = Column(Float, nullable=True)
    is_additional = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    photos = Column(JSON, nullable=True)  # list of photo URLs
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    profile = relationship("Profile", back_populates="services")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    rating = Column(Float, nullable=False)
    moderated = Column(Boolean, default=False, nullable=False)
    visible = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    profile = relationship("Profile", back_populates="reviews")


class YandexReviewsCache(Base):
    """Periodically refreshed snapshot of a location's Yandex Maps rating"""

    __tablename__ = "yandex_reviews_cache"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    profile_location_id = Column(
        String(36), ForeignKey("profile_locations.id", ondelete="CASCADE"), index=True
    )
    rating = Column(Float, nullable=True)
    review_count = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    location = relationship("ProfileLocation", back_populates="yandex_reviews")
