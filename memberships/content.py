"""
Content registry: creators' posts and the file assets attached to them.

Only metadata lives here. Moving bytes in and out of object storage is the
caller's concern; access to a file is always decided through its post.
"""

import logging
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.db import utcnow
from memberships.errors import NotFoundError, PermissionDeniedError
from memberships.models import Capability, FileAsset, Post, Visibility
from memberships.profiles import ProfileRegistry
from memberships.retry import RetryConfig, run_with_retry
from memberships.schemas import FileSpec, PostSpec, PostUpdate, parse_input

logger = logging.getLogger(__name__)


class ContentRegistry:
    """Posts and file assets, owned by creators."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        profiles: ProfileRegistry,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session_factory = session_factory
        self._profiles = profiles
        self._retry_config = retry_config

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def create_post(self, creator_id: str, spec: Union[PostSpec, Mapping[str, Any]]) -> Post:
        post_spec = parse_input(PostSpec, spec)
        await self._profiles.require_capability(creator_id, Capability.CREATOR)

        post = Post(
            creator_id=creator_id,
            title=post_spec.title,
            description=post_spec.description,
            body=post_spec.body,
            visibility=post_spec.visibility,
            min_tier_rank=post_spec.min_tier_rank,
        )
        async with self._session_factory() as session:
            session.add(post)
            await session.commit()

        logger.info(
            "Post created",
            extra={
                "post_id": post.id,
                "creator_id": creator_id,
                "visibility": post.visibility.value,
                "min_tier_rank": post.min_tier_rank,
            },
        )
        return post

    async def get_post(self, post_id: str) -> Post:
        async def _load():
            async with self._session_factory() as session:
                return await session.get(Post, post_id)

        post = await run_with_retry("get_post", _load, self._retry_config)
        if post is None:
            raise NotFoundError("Post", post_id)
        return post

    async def list_posts(self, creator_id: str, public_only: bool = False) -> List[Post]:
        """Newest first."""
        async def _load():
            stmt = select(Post).where(Post.creator_id == creator_id)
            if public_only:
                stmt = stmt.where(Post.visibility == Visibility.PUBLIC)
            async with self._session_factory() as session:
                result = await session.execute(stmt.order_by(Post.created_at.desc()))
                return list(result.scalars().all())

        return await run_with_retry("list_posts", _load, self._retry_config)

    async def update_post(
        self,
        post_id: str,
        creator_id: str,
        changes: Union[PostUpdate, Mapping[str, Any]],
    ) -> Post:
        update = parse_input(PostUpdate, changes)
        async with self._session_factory() as session:
            post = await self._owned_post(session, post_id, creator_id)
            for field, value in update.model_dump(exclude_none=True).items():
                setattr(post, field, value)
            post.updated_at = utcnow()
            await session.commit()

        logger.info("Post updated", extra={"post_id": post_id, "creator_id": creator_id})
        return post

    async def delete_post(self, post_id: str, creator_id: str) -> None:
        async with self._session_factory() as session:
            post = await self._owned_post(session, post_id, creator_id)
            await session.execute(delete(FileAsset).where(FileAsset.post_id == post_id))
            await session.delete(post)
            await session.commit()

        logger.info("Post deleted", extra={"post_id": post_id, "creator_id": creator_id})

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def attach_file(
        self,
        post_id: str,
        uploader_id: str,
        spec: Union[FileSpec, Mapping[str, Any]],
    ) -> FileAsset:
        file_spec = parse_input(FileSpec, spec)
        async with self._session_factory() as session:
            await self._owned_post(session, post_id, uploader_id)
            asset = FileAsset(
                post_id=post_id,
                uploaded_by=uploader_id,
                file_name=file_spec.file_name,
                file_size=file_spec.file_size,
                mime_type=file_spec.mime_type,
                storage_path=file_spec.storage_path,
            )
            session.add(asset)
            await session.commit()

        logger.info(
            "File attached",
            extra={"file_id": asset.id, "post_id": post_id, "file_size": asset.file_size},
        )
        return asset

    async def get_file(self, file_id: str) -> FileAsset:
        async def _load():
            async with self._session_factory() as session:
                return await session.get(FileAsset, file_id)

        asset = await run_with_retry("get_file", _load, self._retry_config)
        if asset is None:
            raise NotFoundError("FileAsset", file_id)
        return asset

    async def list_files(self, post_id: str) -> List[FileAsset]:
        async def _load():
            async with self._session_factory() as session:
                result = await session.execute(
                    select(FileAsset)
                    .where(FileAsset.post_id == post_id)
                    .order_by(FileAsset.uploaded_at.asc())
                )
                return list(result.scalars().all())

        return await run_with_retry("list_files", _load, self._retry_config)

    async def delete_file(self, file_id: str, creator_id: str) -> None:
        async with self._session_factory() as session:
            asset = await session.get(FileAsset, file_id)
            if asset is None:
                raise NotFoundError("FileAsset", file_id)
            await self._owned_post(session, asset.post_id, creator_id)
            await session.delete(asset)
            await session.commit()

        logger.info("File deleted", extra={"file_id": file_id, "creator_id": creator_id})

    async def _owned_post(self, session: AsyncSession, post_id: str, creator_id: str) -> Post:
        post = await session.get(Post, post_id)
        if post is None:
            raise NotFoundError("Post", post_id)
        if post.creator_id != creator_id:
            raise PermissionDeniedError("Only the owning creator can modify this post")
        return post
