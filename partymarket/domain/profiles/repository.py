"""Profile repository - Read-only queries behind the public listing"""

from sqlalchemy.orm import Session, selectinload

from ...models import Profile, Review, Service, YandexReviewsCache


class ProfileRepository:
    """Repository for public profile listing queries"""

    @staticmethod
    def get_published_profiles(db: Session) -> list[Profile]:
        """Get all published profiles with their locations loaded"""
        return (
            db.query(Profile)
            .options(selectinload(Profile.locations))
            .filter(Profile.is_published.is_(True))
            .all()
        )

    @staticmethod
    def get_active_services(db: Session, profile_ids: list[str]) -> list:
        """Get active, non-additional services for the profiles, newest first"""
        if not profile_ids:
            return []
        return (
            db.query(Service.profile_id, Service.price, Service.is_additional, Service.photos)
            .filter(
                Service.profile_id.in_(profile_ids),
                Service.is_active.is_(True),
                Service.is_additional.is_(False),
            )
            .order_by(Service.created_at.desc())
            .all()
        )

    @staticmethod
    def get_visible_reviews(db: Session, profile_ids: list[str]) -> list:
        """Get moderated and visible review ratings for the profiles"""
        if not profile_ids:
            return []
        return (
            db.query(Review.profile_id, Review.rating)
            .filter(
                Review.profile_id.in_(profile_ids),
                Review.moderated.is_(True),
                Review.visible.is_(True),
            )
            .all()
        )

    @staticmethod
    def get_external_reviews(db: Session, location_ids: list[str]) -> list:
        """Get cached Yandex Maps ratings for the locations"""
        if not location_ids:
            return []
        return (
            db.query(
                YandexReviewsCache.profile_location_id,
                YandexReviewsCache.rating,
                YandexReviewsCache.review_count,
            )
            .filter(YandexReviewsCache.profile_location_id.in_(location_ids))
            .all()
        )
