"""Asset database model."""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assethub.database import Base

if TYPE_CHECKING:
    from assethub.models.client import Client
    from assethub.models.user import User


class AssetType(str, Enum):
    """Asset type enumeration."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    OTHER = "other"


class ProcessingStatus(str, Enum):
    """Derivative generation status."""
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class LabelKind(str, Enum):
    """Kinds of free-form labels attached to an asset."""
    TAG = "tag"
    CATEGORY = "category"


def new_asset_id() -> str:
    return str(uuid.uuid4())


class Asset(Base):
    """Asset model: the durable record of an ingested file."""

    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_asset_id)
    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    asset_type: Mapped[AssetType] = mapped_column(SQLEnum(AssetType), nullable=False, index=True)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)

    # Byte-store locations. `file_path`/`*_path` are store-relative, `*_url` public.
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    thumbnail_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    preview_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    preview_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # SHA-256 of the original bytes (hex).
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)

    is_favourite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Format-specific technical detail; provider extras live under "provider".
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        SQLEnum(ProcessingStatus),
        default=ProcessingStatus.COMPLETE,
        nullable=False,
    )
    processing_warnings: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", back_populates="assets")
    client: Mapped["Client"] = relationship("Client", back_populates="assets")
    labels: Mapped[list["AssetLabel"]] = relationship(
        "AssetLabel",
        back_populates="asset",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def _label_values(self, kind: LabelKind) -> list[str]:
        return sorted(label.value for label in self.labels if label.kind == kind)

    @property
    def tags(self) -> list[str]:
        return self._label_values(LabelKind.TAG)

    @property
    def categories(self) -> list[str]:
        return self._label_values(LabelKind.CATEGORY)

    def set_labels(self, kind: LabelKind, values) -> bool:
        """Replace the labels of one kind with a deduplicated set.

        Only the difference is applied, so unchanged labels keep their rows.
        Returns True when anything changed.
        """
        wanted = normalize_labels(values)
        current = {label.value: label for label in self.labels if label.kind == kind}
        changed = False
        for value, label in current.items():
            if value not in wanted:
                self.labels.remove(label)
                changed = True
        for value in sorted(wanted - current.keys()):
            self.labels.append(AssetLabel(kind=kind, value=value))
            changed = True
        return changed


class AssetLabel(Base):
    """A tag or category attached to an asset."""

    __tablename__ = "asset_labels"
    __table_args__ = (
        UniqueConstraint("asset_id", "kind", "value", name="uq_asset_labels_asset_kind_value"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[LabelKind] = mapped_column(SQLEnum(LabelKind), nullable=False)
    value: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    asset: Mapped["Asset"] = relationship("Asset", back_populates="labels")


def normalize_labels(values) -> set[str]:
    """Strip, drop empties and deduplicate a collection of labels."""
    if not values:
        return set()
    return {str(v).strip() for v in values if v is not None and str(v).strip()}
