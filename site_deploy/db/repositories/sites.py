from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import func, select

from site_deploy.db.enums import SiteDomainStatusEnum
from site_deploy.db.models import Page, Site, SiteDomain
from site_deploy.db.repositories.base import Repository, as_uuid


class SitesRepository(Repository):
    def get(self, *, site_id: str | UUID) -> Optional[Site]:
        site_uuid = as_uuid(site_id)
        if site_uuid is None:
            return None
        return self.session.scalars(select(Site).where(Site.id == site_uuid)).first()

    def get_by_slug(self, *, slug: str) -> Optional[Site]:
        return self.session.scalars(select(Site).where(Site.slug == slug)).first()

    def get_by_routable_name(self, *, routable_name: str) -> Optional[Site]:
        """Resolve a bare slug or an active custom domain hostname to its site."""
        name = (routable_name or "").strip().lower()
        if not name:
            return None
        site = self.get_by_slug(slug=name)
        if site:
            return site
        stmt = (
            select(Site)
            .join(SiteDomain, SiteDomain.site_id == Site.id)
            .where(
                func.lower(SiteDomain.hostname) == name,
                SiteDomain.status == SiteDomainStatusEnum.active,
            )
        )
        return self.session.scalars(stmt).first()

    def list_active_domains(self, *, site_id: UUID) -> list[SiteDomain]:
        stmt = (
            select(SiteDomain)
            .where(SiteDomain.site_id == site_id, SiteDomain.status == SiteDomainStatusEnum.active)
            .order_by(SiteDomain.created_at.asc(), SiteDomain.hostname.asc())
        )
        return list(self.session.scalars(stmt).all())

    def routable_names(self, *, site: Site) -> list[str]:
        names = [site.slug]
        for domain in self.list_active_domains(site_id=site.id):
            hostname = domain.hostname.strip().lower()
            if hostname and hostname not in names:
                names.append(hostname)
        return names

    def get_domain(self, *, site_id: UUID, domain_id: str | UUID) -> Optional[SiteDomain]:
        domain_uuid = as_uuid(domain_id)
        if domain_uuid is None:
            return None
        stmt = select(SiteDomain).where(SiteDomain.site_id == site_id, SiteDomain.id == domain_uuid)
        return self.session.scalars(stmt).first()


class PagesRepository(Repository):
    def list_publishable(self, *, site_id: UUID) -> list[Page]:
        stmt = (
            select(Page)
            .where(Page.site_id == site_id, Page.is_published.is_(True))
            .order_by(Page.ordering.asc(), Page.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())
