"""
User model.

Only the KYC slice (``kyc_status``, ``is_verified``, ``kyc_data``) is written by
this service; the remaining columns belong to the account module and are read
for link defaults.
"""
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, Enum, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin
from app.schemas.kyc import KYCStatus


class User(TimestampMixin, Base):
    """
    User record.

    Attributes:
        id (str): Opaque stable identifier
        email (str): User's email address
        name (str): Display name
        is_active (bool): Account status
        kyc_status (KYCStatus): Verification state machine position
        is_verified (bool): Mirror of ``kyc_status == verified``
        kyc_data (dict): Timestamps and metadata of the last verification job
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    kyc_status: Mapped[KYCStatus] = mapped_column(
        Enum(KYCStatus, name="kyc_status", values_callable=lambda e: [m.value for m in e]),
        default=KYCStatus.NOT_STARTED,
        nullable=False
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    kyc_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<User {self.id} kyc_status={self.kyc_status}>"
