"""execute_document_query function for the search assistant

Revision ID: 20261001_000002
Revises: 20261001_000001
Create Date: 2026-10-01 09:30:00
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "20261001_000002"
down_revision = "20261001_000001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Single SELECT/WITH statement only, executed read-only against a documents
    # CTE that holds only the completed documents of org_id.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.execute_document_query(query_text text, org_id uuid)
        RETURNS jsonb
        LANGUAGE plpgsql
        SECURITY DEFINER
        SET search_path = public
        AS $$
        DECLARE
            normalized text;
            code text;
            scoped_cte text;
            scoped text;
            rec record;
            fetched integer := 0;
            result jsonb := '[]'::jsonb;
        BEGIN
            normalized := btrim(query_text);
            IF normalized !~* '^(select|with)\\s' THEN
                RAISE EXCEPTION 'Only SELECT queries are allowed';
            END IF;
            IF position(';' in normalized) > 0 THEN
                RAISE EXCEPTION 'Multiple statements are not allowed';
            END IF;

            code := regexp_replace(normalized, '''([^'']|'''')*''', '''''', 'g');
            IF position('--' in code) > 0 OR position('/*' in code) > 0 THEN
                RAISE EXCEPTION 'SQL comments are not allowed';
            END IF;
            IF code ~* '\\m(insert|update|delete|merge|drop|alter|truncate|create|grant|revoke|copy|vacuum|call|do|execute|prepare|lock|set|reset)\\M' THEN
                RAISE EXCEPTION 'Statement keyword not allowed';
            END IF;
            IF regexp_replace(code, '["`\\[\\]]', '', 'g')
                ~* '(\\.\\s*documents\\M|\\m(audit_logs|information_schema|pg_\\w+|dblink\\w*|lo_\\w+|\\w+_to_xml\\w*|current_setting|set_config)\\M)' THEN
                RAISE EXCEPTION 'Reference not allowed';
            END IF;

            SET LOCAL transaction_read_only = on;

            scoped_cte := 'documents AS (SELECT * FROM public.documents AS scoped_documents '
                || 'WHERE scoped_documents.organization_id = $1 AND scoped_documents.status = ''completed'')';
            IF normalized ~* '^with\\s+recursive\\s' THEN
                scoped := 'WITH RECURSIVE ' || scoped_cte || ', '
                    || regexp_replace(normalized, '^with\\s+recursive\\s+', '', 'i');
            ELSIF normalized ~* '^with\\s' THEN
                scoped := 'WITH ' || scoped_cte || ', ' || regexp_replace(normalized, '^with\\s+', '', 'i');
            ELSE
                scoped := 'WITH ' || scoped_cte || ' ' || normalized;
            END IF;

            FOR rec IN EXECUTE scoped USING org_id LOOP
                result := result || jsonb_build_array(to_jsonb(rec));
                fetched := fetched + 1;
                EXIT WHEN fetched >= 200;
            END LOOP;

            RETURN result;
        END;
        $$;
        """
    )
    op.execute("REVOKE ALL ON FUNCTION public.execute_document_query(text, uuid) FROM PUBLIC")


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS public.execute_document_query(text, uuid)")
