"""enable RLS policies for document tables

Revision ID: 20261001_000003
Revises: 20261001_000002
Create Date: 2026-10-01 10:00:00
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "20261001_000003"
down_revision = "20261001_000002"
branch_labels = None
depends_on = None

TABLES = ["documents", "audit_logs"]


def _has_role(role_name: str) -> bool:
    """Check if a PostgreSQL role exists (Supabase envs have service_role)."""
    from sqlalchemy import text

    conn = op.get_bind()
    result = conn.execute(text("SELECT 1 FROM pg_roles WHERE rolname = :r"), {"r": role_name}).scalar()
    return result is not None


def upgrade() -> None:
    # All reads and writes go through the backend; PostgREST clients get no direct access.
    if not _has_role("service_role"):
        # plain PostgreSQL
        return

    for table in TABLES:
        op.execute(f"ALTER TABLE public.{table} ENABLE ROW LEVEL SECURITY;")
        op.execute(
            f"""
            CREATE POLICY "{table}_service_role_all" ON public.{table}
            FOR ALL
            TO service_role
            USING (true)
            WITH CHECK (true);
            """
        )

    op.execute("GRANT EXECUTE ON FUNCTION public.execute_document_query(text, uuid) TO service_role")


def downgrade() -> None:
    if not _has_role("service_role"):
        return

    op.execute("REVOKE EXECUTE ON FUNCTION public.execute_document_query(text, uuid) FROM service_role")
    for table in TABLES:
        op.execute(f'DROP POLICY IF EXISTS "{table}_service_role_all" ON public.{table};')
        op.execute(f"ALTER TABLE public.{table} DISABLE ROW LEVEL SECURITY;")
