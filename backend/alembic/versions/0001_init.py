from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("roles", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "admin_audit_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("admin_user_id", sa.Integer, sa.ForeignKey("users.id", name="fk_admin_audit_logs_admin_user_id_users")),
        sa.Column("admin_code", sa.String(255)),
        sa.Column("action", sa.String(255), nullable=False),
        sa.Column("target_type", sa.String(100)),
        sa.Column("target_id", sa.String(255)),
        sa.Column("metadata_json", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_audit_logs_admin_code", "admin_audit_logs", ["admin_code"])

    op.create_table(
        "audit_revisions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("object_class", sa.String(255), nullable=False),
        sa.Column("object_id", sa.String(255), nullable=False),
        sa.Column("revision_type", sa.String(3), nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("username", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_revisions_object", "audit_revisions", ["object_class", "object_id"])

    op.create_table(
        "acl_entries",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("object_class", sa.String(255), nullable=False),
        sa.Column("object_id", sa.String(255), nullable=False),
        sa.Column("identity_type", sa.String(10), nullable=False),
        sa.Column("identity", sa.String(255), nullable=False),
        sa.Column("mask", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_acl_entries_object", "acl_entries", ["object_class", "object_id"])


def downgrade():
    op.drop_index("ix_acl_entries_object", table_name="acl_entries")
    op.drop_table("acl_entries")
    op.drop_index("ix_audit_revisions_object", table_name="audit_revisions")
    op.drop_table("audit_revisions")
    op.drop_index("ix_admin_audit_logs_admin_code", table_name="admin_audit_logs")
    op.drop_table("admin_audit_logs")
    op.drop_table("users")
