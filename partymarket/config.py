import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

# Falls back to a local SQLite file so the API can boot without Postgres
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./partymarket.db")

# Public profile listing cache
PUBLIC_PROFILES_CACHE_TTL_SECONDS = int(os.getenv("PUBLIC_PROFILES_CACHE_TTL_SECONDS", "300"))
# Edge/browser caching aligned with the in-process TTL
PUBLIC_PROFILES_CACHE_CONTROL = os.getenv(
    "PUBLIC_PROFILES_CACHE_CONTROL", "public, s-maxage=300, stale-while-revalidate=600"
)
PUBLIC_PROFILES_RPM = int(os.getenv("PUBLIC_PROFILES_RPM", "120"))

# Placeholder point for venues without usable geo data (Saint Petersburg)
DEFAULT_VENUE_LAT = float(os.getenv("DEFAULT_VENUE_LAT", "59.9343"))
DEFAULT_VENUE_LNG = float(os.getenv("DEFAULT_VENUE_LNG", "30.3351"))
# Swap lat/lng only when the swapped point is this much closer to the city
COORDS_SWAP_THRESHOLD_KM = float(os.getenv("COORDS_SWAP_THRESHOLD_KM", "5"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:5173").split(",")
    if origin.strip()
]

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"
