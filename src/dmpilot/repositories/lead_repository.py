"""Repository for captured leads."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from dmpilot.models.lead import Lead
from dmpilot.repositories.base_repository import BaseRepository

LEAD_FIELDS = ("email", "phone")


class LeadRepository(BaseRepository[Lead]):
    """Repository for Lead CRUD operations."""

    def __init__(self, session: Session):
        super().__init__(session, Lead)

    def get_by_user(self, account_id: int, external_user_id: str) -> Optional[Lead]:
        """Return the lead for an Instagram user, if any."""
        stmt = select(Lead).where(
            Lead.account_id == account_id,
            Lead.external_user_id == external_user_id,
        )
        return self.session.execute(stmt).scalars().first()

    def get_by_account(self, account_id: int, limit: int = 100) -> list[Lead]:
        """Return the newest leads for an account."""
        stmt = (
            select(Lead)
            .where(Lead.account_id == account_id)
            .order_by(Lead.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def upsert_field(
        self,
        account_id: int,
        external_user_id: str,
        field: str,
        value: str,
        username: Optional[str] = None,
        source: str = "dm",
    ) -> Lead:
        """Create the lead if needed and fill one contact field if it is still empty."""
        if field not in LEAD_FIELDS:
            raise ValueError(f"Unknown lead field: {field}")

        lead = self.get_by_user(account_id, external_user_id)
        if lead is None:
            return self.create(
                account_id=account_id,
                external_user_id=external_user_id,
                username=username,
                source=source,
                **{field: value},
            )

        if getattr(lead, field) is None:
            setattr(lead, field, value)
            self.session.flush()
        return lead
