"""Profile listing schemas - Pydantic models for the public API"""

from typing import Optional

from pydantic import BaseModel


class ProfileLocationItem(BaseModel):
    """Active location of a venue with normalized coordinates"""

    id: str
    address: Optional[str] = None
    city: Optional[str] = None
    lat: float
    lng: float
    is_main: bool = False


class ProfileListItem(BaseModel):
    """Flattened profile card for public listing and search"""

    id: str
    name: str
    slug: Optional[str] = None
    category: str
    image: Optional[str] = None
    rating: float
    reviews: int
    priceRange: str
    price_from: Optional[float] = None
    tags: list[str] = []
    is_verified: bool = False
    is_featured: bool = False
    venue_type: Optional[str] = None
    service_photos: list[str] = []
    locations: list[ProfileLocationItem] = []
    lat: Optional[float] = None
    lng: Optional[float] = None
    city: str = ""
    description: str = ""


class PublicProfilesResponse(BaseModel):
    profiles: list[ProfileListItem]


class ErrorResponse(BaseModel):
    error: str
