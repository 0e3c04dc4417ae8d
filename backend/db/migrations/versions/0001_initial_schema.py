"""Initial schema for the treasury operation ledger."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


ENUM_DDL: tuple[str, ...] = (
    "CREATE TYPE operation_kind_enum AS ENUM ('deployment', 'burn', 'buyback', 'claim', 'distribution');",
    "CREATE TYPE operation_status_enum AS ENUM ('pending', 'processing', 'success', 'failed', 'completed', 'partial');",
    "CREATE TYPE distribution_kind_enum AS ENUM ('native', 'managed');",
    "CREATE TYPE audit_kind_enum AS ENUM ('deploy', 'burn', 'buyback', 'airdrop', 'claim_rewards', 'snapshot', 'thought');",
)

TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE operation_record (
        record_id UUID NOT NULL,
        record_seq BIGINT GENERATED ALWAYS AS IDENTITY,
        kind operation_kind_enum NOT NULL,
        asset_id TEXT,
        quantity NUMERIC(38,18) NOT NULL,
        settled_quantity NUMERIC(38,18),
        status operation_status_enum NOT NULL,
        reason TEXT,
        settlement_signature TEXT,
        error TEXT,
        details JSONB NOT NULL DEFAULT '{}'::jsonb,
        distribution_kind distribution_kind_enum,
        recipient_count INTEGER,
        total_requested NUMERIC(38,18),
        outcomes JSONB,
        snapshot_id UUID,
        created_at_utc TIMESTAMPTZ NOT NULL,
        completed_at_utc TIMESTAMPTZ,
        CONSTRAINT pk_operation_record PRIMARY KEY (record_id),
        CONSTRAINT uq_operation_record_seq UNIQUE (record_seq),
        CONSTRAINT ck_operation_record_quantity_non_negative CHECK (quantity >= 0),
        CONSTRAINT ck_operation_record_settled_non_negative CHECK (settled_quantity IS NULL OR settled_quantity >= 0),
        CONSTRAINT ck_operation_record_asset_required CHECK (
            asset_id IS NOT NULL OR kind = 'deployment' OR COALESCE(distribution_kind = 'native', FALSE)
        ),
        CONSTRAINT ck_operation_record_status_domain CHECK (
            (kind = 'distribution' AND status IN ('processing', 'completed', 'partial', 'failed'))
            OR (kind <> 'distribution' AND status IN ('pending', 'success', 'failed'))
        ),
        CONSTRAINT ck_operation_record_completed_iff_terminal CHECK (
            (status IN ('pending', 'processing')) = (completed_at_utc IS NULL)
        ),
        CONSTRAINT ck_operation_record_completed_after_created CHECK (
            completed_at_utc IS NULL OR completed_at_utc >= created_at_utc
        ),
        CONSTRAINT ck_operation_record_distribution_columns CHECK (
            (kind = 'distribution') = (
                distribution_kind IS NOT NULL
                AND recipient_count IS NOT NULL
                AND total_requested IS NOT NULL
                AND outcomes IS NOT NULL
            )
        ),
        CONSTRAINT ck_operation_record_snapshot_distribution_only CHECK (snapshot_id IS NULL OR kind = 'distribution'),
        CONSTRAINT ck_operation_record_recipient_count_pos CHECK (recipient_count IS NULL OR recipient_count > 0),
        CONSTRAINT ck_operation_record_total_matches_quantity CHECK (total_requested IS NULL OR total_requested = quantity),
        CONSTRAINT ck_operation_record_outcomes_array CHECK (outcomes IS NULL OR jsonb_typeof(outcomes) = 'array')
    );
    """,
    """
    CREATE TABLE audit_entry (
        entry_id UUID NOT NULL,
        entry_seq BIGINT GENERATED ALWAYS AS IDENTITY,
        kind audit_kind_enum NOT NULL,
        action TEXT NOT NULL,
        status operation_status_enum NOT NULL,
        rationale TEXT,
        description TEXT,
        asset_id TEXT,
        amount NUMERIC(38,18),
        settlement_signature TEXT,
        operation_id UUID,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at_utc TIMESTAMPTZ NOT NULL,
        completed_at_utc TIMESTAMPTZ,
        CONSTRAINT pk_audit_entry PRIMARY KEY (entry_id),
        CONSTRAINT uq_audit_entry_seq UNIQUE (entry_seq),
        CONSTRAINT ck_audit_entry_action_not_blank CHECK (length(btrim(action)) > 0),
        CONSTRAINT ck_audit_entry_amount_non_negative CHECK (amount IS NULL OR amount >= 0),
        CONSTRAINT ck_audit_entry_completed_iff_terminal CHECK (
            (status IN ('pending', 'processing')) = (completed_at_utc IS NULL)
        ),
        CONSTRAINT ck_audit_entry_unpaired_kinds CHECK (kind NOT IN ('thought', 'snapshot') OR operation_id IS NULL),
        CONSTRAINT ck_audit_entry_metadata_object CHECK (jsonb_typeof(metadata) = 'object')
    );
    """,
    """
    CREATE TABLE holder_snapshot (
        snapshot_id UUID NOT NULL,
        snapshot_seq BIGINT GENERATED ALWAYS AS IDENTITY,
        asset_id TEXT NOT NULL,
        holders JSONB NOT NULL,
        holder_count INTEGER NOT NULL,
        total_held NUMERIC(38,18) NOT NULL,
        created_at_utc TIMESTAMPTZ NOT NULL,
        CONSTRAINT pk_holder_snapshot PRIMARY KEY (snapshot_id),
        CONSTRAINT uq_holder_snapshot_seq UNIQUE (snapshot_seq),
        CONSTRAINT ck_holder_snapshot_asset_not_blank CHECK (length(btrim(asset_id)) > 0),
        CONSTRAINT ck_holder_snapshot_holder_count_pos CHECK (holder_count > 0),
        CONSTRAINT ck_holder_snapshot_total_held_pos CHECK (total_held > 0),
        CONSTRAINT ck_holder_snapshot_holders_match_count CHECK (
            jsonb_typeof(holders) = 'array' AND jsonb_array_length(holders) = holder_count
        )
    );
    """,
    """
    CREATE TABLE treasury_balance_cache (
        cache_id SMALLINT NOT NULL DEFAULT 1,
        native_balance NUMERIC(38,18) NOT NULL,
        managed_balance NUMERIC(38,18) NOT NULL,
        managed_asset_id TEXT,
        refreshed_at_utc TIMESTAMPTZ NOT NULL,
        CONSTRAINT pk_treasury_balance_cache PRIMARY KEY (cache_id),
        CONSTRAINT ck_treasury_balance_cache_singleton CHECK (cache_id = 1),
        CONSTRAINT ck_treasury_balance_cache_native_non_negative CHECK (native_balance >= 0),
        CONSTRAINT ck_treasury_balance_cache_managed_non_negative CHECK (managed_balance >= 0)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_operation_record_created_desc ON operation_record USING btree (created_at_utc DESC, record_seq DESC);",
    "CREATE INDEX idx_operation_record_kind_created_desc ON operation_record USING btree (kind, created_at_utc DESC, record_seq DESC);",
    "CREATE INDEX idx_operation_record_asset_created_desc ON operation_record USING btree (asset_id, created_at_utc DESC, record_seq DESC);",
    "CREATE INDEX idx_operation_record_open_status ON operation_record USING btree (status) WHERE status IN ('pending', 'processing');",
    "CREATE INDEX idx_audit_entry_created_desc ON audit_entry USING btree (created_at_utc DESC, entry_seq DESC);",
    "CREATE INDEX idx_audit_entry_kind_created_desc ON audit_entry USING btree (kind, created_at_utc DESC, entry_seq DESC);",
    "CREATE UNIQUE INDEX uqix_audit_entry_operation_id ON audit_entry USING btree (operation_id) WHERE operation_id IS NOT NULL;",
    "CREATE INDEX idx_holder_snapshot_asset_created_desc ON holder_snapshot USING btree (asset_id, created_at_utc DESC, snapshot_seq DESC);",
)

APPEND_ONLY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_append_only()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION 'append-only violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_holder_snapshot_append_only
    BEFORE UPDATE OR DELETE ON holder_snapshot
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    _execute_all(ENUM_DDL)
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(APPEND_ONLY_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(
        (
            "DROP TRIGGER IF EXISTS trg_holder_snapshot_append_only ON holder_snapshot;",
            "DROP FUNCTION IF EXISTS fn_enforce_append_only();",
            "DROP TABLE IF EXISTS treasury_balance_cache;",
            "DROP TABLE IF EXISTS holder_snapshot;",
            "DROP TABLE IF EXISTS audit_entry;",
            "DROP TABLE IF EXISTS operation_record;",
            "DROP TYPE IF EXISTS audit_kind_enum;",
            "DROP TYPE IF EXISTS distribution_kind_enum;",
            "DROP TYPE IF EXISTS operation_status_enum;",
            "DROP TYPE IF EXISTS operation_kind_enum;",
        )
    )
    logger.info("Completed initial schema migration downgrade.")
