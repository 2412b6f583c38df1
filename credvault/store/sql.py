"""SQLAlchemy implementation of the credential store."""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from credvault.db import Base, build_session_factory
from credvault.exceptions import NotFound, StorageError
from credvault.models import (
    ApiKeyEntry,
    OAuthState,
    ProviderSelection,
    SiteAuthorization,
    UserAuthorization,
)
from credvault.store.backends import backend_for_url, normalize_database_url
from credvault.store.base import OAuthStateRecord
from credvault.utils.security import mask_sensitive, sanitize_log_message

logger = logging.getLogger(__name__)


class SQLCredentialStore:
    """Credential store over an async SQLAlchemy engine.

    Args:
        engine: Engine created by ``backend``
        backend: Backend strategy providing the dialect's upsert construct
    """

    def __init__(self, engine: AsyncEngine, backend):
        self._engine = engine
        self._backend = backend
        self._sessions = build_session_factory(engine)

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Run a unit of work in one transaction; commit on success, roll back on error."""
        try:
            async with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Storage operation '%s' failed: %s", operation, type(e).__name__, exc_info=True)
            raise StorageError(f"Storage operation failed: {operation}") from e

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def initialize_schema(self) -> None:
        """Create all tables that do not exist yet. Safe to call on every start."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error("Schema initialization failed: %s", type(e).__name__, exc_info=True)
            raise StorageError("Schema initialization failed") from e
        logger.info("Credential store schema ready (%s backend)", self._backend.name)

    async def close(self) -> None:
        """Dispose of pooled connections."""
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Site and user authorizations
    # ------------------------------------------------------------------

    async def upsert_site_authorization(self, site_id: str, access_token: str) -> None:
        stmt = self._backend.insert(SiteAuthorization).values(site_id=site_id, access_token=access_token)
        stmt = stmt.on_conflict_do_update(
            index_elements=["site_id"],
            set_={"access_token": stmt.excluded.access_token, "updated_at": func.now()},
        )
        async with self._transaction("upsert_site_authorization") as session:
            await session.execute(stmt)
        logger.debug("Stored site authorization for site %s", sanitize_log_message(site_id))

    async def upsert_user_authorization(self, user_id: str, access_token: str) -> None:
        stmt = self._backend.insert(UserAuthorization).values(user_id=user_id, access_token=access_token)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={"access_token": stmt.excluded.access_token, "created_at": func.now()},
        )
        async with self._transaction("upsert_user_authorization") as session:
            await session.execute(stmt)
        logger.debug("Stored user authorization for user %s", sanitize_log_message(user_id))

    async def get_access_token_by_site(self, site_id: str) -> str:
        """Return the site's access token.

        Raises:
            NotFound: If the site never completed authorization
        """
        async with self._transaction("get_access_token_by_site") as session:
            result = await session.execute(
                select(SiteAuthorization.access_token).where(SiteAuthorization.site_id == site_id)
            )
            token = result.scalar_one_or_none()

        if token is None:
            logger.debug("No access token for site %s", sanitize_log_message(site_id))
            raise NotFound(f"No access token found for site ID: {site_id}")
        return token

    async def get_access_token_by_user(self, user_id: str) -> str:
        """Return the user's most recent access token.

        Raises:
            NotFound: If the user never authorized the app
        """
        async with self._transaction("get_access_token_by_user") as session:
            result = await session.execute(
                select(UserAuthorization.access_token)
                .where(UserAuthorization.user_id == user_id)
                .order_by(UserAuthorization.id.desc())
                .limit(1)
            )
            token = result.scalar_one_or_none()

        if token is None:
            raise NotFound(f"No access token found for user ID: {user_id}")
        return token

    async def list_authorizations(self) -> Dict[str, List[str]]:
        """List authorized site ids and user ids. Tokens are not returned."""
        async with self._transaction("list_authorizations") as session:
            sites = await session.execute(select(SiteAuthorization.site_id).order_by(SiteAuthorization.site_id))
            users = await session.execute(select(UserAuthorization.user_id).order_by(UserAuthorization.user_id))
            return {
                "sites": list(sites.scalars().all()),
                "users": list(users.scalars().all()),
            }

    # ------------------------------------------------------------------
    # API keys and provider selection
    # ------------------------------------------------------------------

    async def save_api_key(self, user_id: str, site_id: str, provider: str, encrypted_key: str) -> None:
        """Upsert the encrypted key and make its provider the active one, atomically."""
        key_stmt = self._backend.insert(ApiKeyEntry).values(
            user_id=user_id, site_id=site_id, provider=provider, encrypted_key=encrypted_key
        )
        key_stmt = key_stmt.on_conflict_do_update(
            index_elements=["user_id", "site_id", "provider"],
            set_={"encrypted_key": key_stmt.excluded.encrypted_key, "created_at": func.now()},
        )

        selection_stmt = self._backend.insert(ProviderSelection).values(
            user_id=user_id, site_id=site_id, provider=provider
        )
        selection_stmt = selection_stmt.on_conflict_do_update(
            index_elements=["user_id", "site_id"],
            set_={"provider": selection_stmt.excluded.provider, "created_at": func.now()},
        )

        async with self._transaction("save_api_key") as session:
            await session.execute(key_stmt)
            await session.execute(selection_stmt)

        logger.info(
            "Saved encrypted API key (user=%s, site=%s, provider=%s)",
            sanitize_log_message(user_id),
            sanitize_log_message(site_id),
            sanitize_log_message(provider),
        )

    async def get_api_key(self, user_id: str, site_id: str, provider: str) -> Optional[str]:
        async with self._transaction("get_api_key") as session:
            result = await session.execute(
                select(ApiKeyEntry.encrypted_key).where(
                    ApiKeyEntry.user_id == user_id,
                    ApiKeyEntry.site_id == site_id,
                    ApiKeyEntry.provider == provider,
                )
            )
            return result.scalar_one_or_none()

    async def delete_api_key(self, user_id: str, site_id: str, provider: str) -> None:
        """Delete the key and any selection pointing at it, atomically. Idempotent."""
        async with self._transaction("delete_api_key") as session:
            await session.execute(
                delete(ApiKeyEntry).where(
                    ApiKeyEntry.user_id == user_id,
                    ApiKeyEntry.site_id == site_id,
                    ApiKeyEntry.provider == provider,
                )
            )
            await session.execute(
                delete(ProviderSelection).where(
                    ProviderSelection.user_id == user_id,
                    ProviderSelection.site_id == site_id,
                    ProviderSelection.provider == provider,
                )
            )

        logger.info(
            "Deleted API key (user=%s, site=%s, provider=%s)",
            sanitize_log_message(user_id),
            sanitize_log_message(site_id),
            sanitize_log_message(provider),
        )

    async def get_selected_provider(self, user_id: str, site_id: str) -> Optional[str]:
        async with self._transaction("get_selected_provider") as session:
            result = await session.execute(
                select(ProviderSelection.provider).where(
                    ProviderSelection.user_id == user_id,
                    ProviderSelection.site_id == site_id,
                )
            )
            return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # OAuth state
    # ------------------------------------------------------------------

    async def save_oauth_state(self, state: str, redirect_uri: str, flow: str, ttl_minutes: int = 10) -> None:
        async with self._transaction("save_oauth_state") as session:
            await session.execute(delete(OAuthState).where(OAuthState.expires_at <= datetime.now(UTC)))
            session.add(OAuthState.issue(state, redirect_uri, flow, ttl_minutes=ttl_minutes))
        logger.debug("Stored OAuth state: %s", mask_sensitive(state))

    async def consume_oauth_state(self, state: str) -> Optional[OAuthStateRecord]:
        """Look up and delete a state (one-time use).

        Returns:
            The stored record, or None if the state is unknown or expired
        """
        async with self._transaction("consume_oauth_state") as session:
            await session.execute(delete(OAuthState).where(OAuthState.expires_at <= datetime.now(UTC)))

            result = await session.execute(select(OAuthState).where(OAuthState.state == state))
            row = result.scalar_one_or_none()
            if row is None:
                return None

            await session.delete(row)

            if row.is_expired() or not secrets.compare_digest(row.state.encode(), state.encode()):
                return None

            return OAuthStateRecord(
                state=row.state,
                redirect_uri=row.redirect_uri,
                flow=row.flow,
                created_at=row.created_at,
            )


def create_credential_store(database_url: str) -> SQLCredentialStore:
    """Build a credential store for ``database_url``, picking the matching backend."""
    url = normalize_database_url(database_url)
    backend = backend_for_url(url)
    engine = backend.create_engine(url)
    logger.info("Using %s credential store backend", backend.name)
    return SQLCredentialStore(engine, backend)
