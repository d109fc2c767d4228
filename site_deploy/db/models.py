from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from site_deploy.db.base import Base
from site_deploy.db.enums import DeploymentRoutingStatusEnum, SiteDomainStatusEnum

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


class Business(Base):
    __tablename__ = "businesses"
    __table_args__ = (sa.Index("idx_businesses_tenant", "tenant_id"),)

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


class Site(Base):
    __tablename__ = "sites"
    __table_args__ = (
        UniqueConstraint("slug", name="uq_sites_slug"),
        sa.Index("idx_sites_tenant_business", "tenant_id", "business_id"),
    )

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    business_id: Mapped[UUID] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


class Page(Base):
    __tablename__ = "pages"
    __table_args__ = (
        UniqueConstraint("site_id", "slug", name="uq_pages_site_slug"),
        sa.Index("idx_pages_site", "site_id"),
    )

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    ordering: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_home: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=sa.false())
    is_published: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa.false()
    )
    content: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


class SiteDomain(Base):
    __tablename__ = "site_domains"
    __table_args__ = (
        UniqueConstraint("hostname", name="uq_site_domains_hostname"),
        sa.Index("idx_site_domains_site", "site_id"),
    )

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    hostname: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[SiteDomainStatusEnum] = mapped_column(
        Enum(SiteDomainStatusEnum, name="site_domain_status"),
        nullable=False,
        default=SiteDomainStatusEnum.pending,
        server_default=SiteDomainStatusEnum.pending.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


class ContentSnapshot(Base):
    __tablename__ = "content_snapshots"
    __table_args__ = (
        UniqueConstraint("site_id", "version_number", name="uq_content_snapshots_site_version"),
        sa.Index("idx_content_snapshots_site", "site_id"),
    )

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


class Deployment(Base):
    __tablename__ = "deployments"
    __table_args__ = (
        UniqueConstraint("artifact_prefix", name="uq_deployments_artifact_prefix"),
        sa.Index("idx_deployments_site_created", "site_id", "created_at"),
        sa.Index(
            "uq_deployments_site_active",
            "site_id",
            unique=True,
            postgresql_where=sa.text("is_active"),
            sqlite_where=sa.text("is_active = 1"),
        ),
    )

    id: Mapped[UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    content_snapshot_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("content_snapshots.id", ondelete="SET NULL"), nullable=True
    )
    deployment_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    artifact_prefix: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=sa.false())
    routing_status: Mapped[DeploymentRoutingStatusEnum] = mapped_column(
        Enum(DeploymentRoutingStatusEnum, name="deployment_routing_status"),
        nullable=False,
        default=DeploymentRoutingStatusEnum.not_attempted,
        server_default=DeploymentRoutingStatusEnum.not_attempted.value,
    )
    created_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    @property
    def routing_updated(self) -> bool:
        return self.routing_status == DeploymentRoutingStatusEnum.succeeded
