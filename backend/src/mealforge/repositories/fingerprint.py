"""ImageFingerprint repository for MealForge."""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mealforge.models.fingerprint import ImageFingerprint


class ImageFingerprintRepository:
    """Repository for the fingerprint table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, fingerprint: ImageFingerprint) -> ImageFingerprint:
        self.session.add(fingerprint)
        await self.session.flush()
        return fingerprint

    async def list_by_scope(self, scope_key: str) -> list[ImageFingerprint]:
        result = await self.session.execute(
            select(ImageFingerprint)
            .where(ImageFingerprint.scope_key == scope_key)  # type: ignore[arg-type]
            .order_by(ImageFingerprint.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_all(self) -> list[ImageFingerprint]:
        """Retrieve every stored fingerprint (startup index warm-up)."""
        result = await self.session.execute(
            select(ImageFingerprint).order_by(ImageFingerprint.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete_by_task(self, source_task_id: str, scope_key: str) -> int:
        """Remove the fingerprints of an image that was never published."""
        result = await self.session.execute(
            delete(ImageFingerprint)
            .where(ImageFingerprint.source_task_id == source_task_id)  # type: ignore[arg-type]
            .where(ImageFingerprint.scope_key == scope_key)  # type: ignore[arg-type]
        )
        return result.rowcount or 0
