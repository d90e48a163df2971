"""Repository for Instagram account operations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dmpilot.models.account import ConnectionStatus, InstagramAccount
from dmpilot.repositories.base_repository import BaseRepository


class AccountRepository(BaseRepository[InstagramAccount]):
    """Repository for Instagram account CRUD operations."""

    def __init__(self, session: Session):
        super().__init__(session, InstagramAccount)

    def get_by_instagram_id(self, instagram_account_id: str) -> Optional[InstagramAccount]:
        """Get account by the Instagram account id used for webhook routing."""
        stmt = select(InstagramAccount).where(
            InstagramAccount.instagram_account_id == instagram_account_id
        )
        result = self.session.execute(stmt)
        return result.scalar_one_or_none()

    def get_active_accounts(self) -> list[InstagramAccount]:
        """Get all active accounts."""
        stmt = (
            select(InstagramAccount)
            .where(InstagramAccount.is_active == True)
            .order_by(InstagramAccount.id)
        )
        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def save_config(
        self,
        access_token: str,
        page_id: str,
        instagram_account_id: str,
        token_expires_at: Optional[datetime] = None,
    ) -> InstagramAccount:
        """Create or refresh an account from a credential save.

        Saving a credential always resets the connection to ``connected``.
        """
        account = self.get_by_instagram_id(instagram_account_id)
        if account is None:
            return self.create(
                access_token=access_token,
                page_id=page_id,
                instagram_account_id=instagram_account_id,
                token_expires_at=token_expires_at,
                connection_status=ConnectionStatus.CONNECTED,
                is_active=True,
            )

        account.access_token = access_token
        account.page_id = page_id
        account.token_expires_at = token_expires_at
        account.connection_status = ConnectionStatus.CONNECTED
        account.is_active = True
        self.session.flush()
        return account

    def set_connection_status(self, id: int, status: ConnectionStatus) -> bool:
        """Set the connection status. Returns True if the row changed."""
        stmt = (
            update(InstagramAccount)
            .where(InstagramAccount.id == id, InstagramAccount.connection_status != status)
            .values(connection_status=status)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def mark_expired(self, id: int) -> bool:
        """Flag the credential as expired after an auth failure."""
        return self.set_connection_status(id, ConnectionStatus.EXPIRED)

    def deactivate(self, id: int) -> Optional[InstagramAccount]:
        """Deactivate an account."""
        return self.update(id, is_active=False)

    def update_automation(self, id: int, **settings) -> Optional[InstagramAccount]:
        """Update automation settings, ignoring unset values."""
        kwargs = {key: value for key, value in settings.items() if value is not None}
        if kwargs:
            return self.update(id, **kwargs)
        return self.get(id)
