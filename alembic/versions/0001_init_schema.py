"""Initial site deployment schema"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE TYPE site_domain_status AS ENUM ('pending','verified','active','disabled');")
    op.execute("CREATE TYPE deployment_routing_status AS ENUM ('not_attempted','failed','succeeded');")

    uuid = postgresql.UUID(as_uuid=True)
    site_domain_status_enum = postgresql.ENUM(name="site_domain_status", create_type=False)
    routing_status_enum = postgresql.ENUM(name="deployment_routing_status", create_type=False)

    op.create_table(
        "tenants",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )

    op.create_table(
        "businesses",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", uuid, sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("idx_businesses_tenant", "businesses", ["tenant_id"])

    op.create_table(
        "sites",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", uuid, sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_id", uuid, sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("slug", name="uq_sites_slug"),
    )
    op.create_index("idx_sites_tenant_business", "sites", ["tenant_id", "business_id"])

    op.create_table(
        "pages",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", uuid, sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("ordering", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_home", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "content",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("site_id", "slug", name="uq_pages_site_slug"),
    )
    op.create_index("idx_pages_site", "pages", ["site_id"])

    op.create_table(
        "site_domains",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", uuid, sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("hostname", sa.Text(), nullable=False),
        sa.Column("status", site_domain_status_enum, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("hostname", name="uq_site_domains_hostname"),
    )
    op.create_index("idx_site_domains_site", "site_domains", ["site_id"])

    op.create_table(
        "content_snapshots",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", uuid, sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("content", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("site_id", "version_number", name="uq_content_snapshots_site_version"),
    )
    op.create_index("idx_content_snapshots_site", "content_snapshots", ["site_id"])

    op.create_table(
        "deployments",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("site_id", uuid, sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "content_snapshot_id",
            uuid,
            sa.ForeignKey("content_snapshots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("deployment_name", sa.Text(), nullable=True),
        sa.Column("artifact_prefix", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("routing_status", routing_status_enum, nullable=False, server_default=sa.text("'not_attempted'")),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("artifact_prefix", name="uq_deployments_artifact_prefix"),
    )
    op.create_index("idx_deployments_site_created", "deployments", ["site_id", "created_at"])
    op.create_index(
        "uq_deployments_site_active",
        "deployments",
        ["site_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    op.drop_index("uq_deployments_site_active", table_name="deployments")
    op.drop_index("idx_deployments_site_created", table_name="deployments")
    op.drop_table("deployments")
    op.drop_index("idx_content_snapshots_site", table_name="content_snapshots")
    op.drop_table("content_snapshots")
    op.drop_index("idx_site_domains_site", table_name="site_domains")
    op.drop_table("site_domains")
    op.drop_index("idx_pages_site", table_name="pages")
    op.drop_table("pages")
    op.drop_index("idx_sites_tenant_business", table_name="sites")
    op.drop_table("sites")
    op.drop_index("idx_businesses_tenant", table_name="businesses")
    op.drop_table("businesses")
    op.drop_table("tenants")
    op.execute("DROP TYPE IF EXISTS deployment_routing_status;")
    op.execute("DROP TYPE IF EXISTS site_domain_status;")
