"""001 – Leave engine schema: requests, approvals, balance ledger, audit trail.

Revision ID: 001_leave_engine_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_leave_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    (
        "leave_request_status",
        ["draft", "submitted", "approved", "rejected", "cancelled"],
    ),
    (
        "leave_type",
        [
            "ANNUAL_LEAVE_IN",
            "SICK_LEAVE_IN",
            "CASUAL_LEAVE_IN",
            "MATERNITY_LEAVE_IN",
            "PATERNITY_LEAVE_IN",
            "COMPENSATORY_OFF_IN",
            "VACATION_LEAVE_PH",
            "SICK_LEAVE_PH",
            "MATERNITY_LEAVE_PH",
            "PATERNITY_LEAVE_PH",
            "SOLO_PARENT_LEAVE_PH",
            "SPECIAL_LEAVE_WOMEN_PH",
            "ANNUAL_LEAVE_AU",
            "SICK_CARERS_LEAVE_AU",
            "LONG_SERVICE_LEAVE_AU",
            "PARENTAL_LEAVE_AU",
            "COMPASSIONATE_LEAVE_AU",
        ],
    ),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employment_records ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employment_records (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id     UUID NOT NULL,
            client_id   UUID NOT NULL,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_employment_user_client UNIQUE (user_id, client_id)
        )
    """)
    op.execute("CREATE INDEX ix_employment_records_user_id ON employment_records(user_id)")
    op.execute("CREATE INDEX ix_employment_records_client_id ON employment_records(client_id)")

    # ── 2. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id             UUID NOT NULL,
            country_code        VARCHAR(2) NOT NULL,
            leave_type          leave_type NOT NULL,
            start_date          DATE NOT NULL,
            end_date            DATE NOT NULL,
            total_days          NUMERIC(6,2) NOT NULL,
            status              leave_request_status NOT NULL DEFAULT 'draft',
            notes               TEXT,
            payroll_period_id   UUID,
            is_paid             BOOLEAN NOT NULL DEFAULT TRUE,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (end_date >= start_date),
            CONSTRAINT ck_leave_request_total_days CHECK (total_days >= 0.5)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_user_dates
            ON leave_requests(user_id, start_date, end_date)
    """)
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests(status)")

    # ── 3. leave_approvals ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_approvals (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id    UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            approver_id         UUID NOT NULL,
            status              leave_request_status NOT NULL,
            comments            TEXT,
            approved_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_approvals_leave_request_id
            ON leave_approvals(leave_request_id)
    """)

    # ── 4. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id         UUID NOT NULL,
            country_code    VARCHAR(2) NOT NULL,
            leave_type      leave_type NOT NULL,
            year            INTEGER NOT NULL,
            total_days      NUMERIC(6,2) NOT NULL DEFAULT 0,
            used_days       NUMERIC(6,2) NOT NULL DEFAULT 0,
            available_days  NUMERIC(6,2) NOT NULL DEFAULT 0,
            accrual_rate    NUMERIC(6,2) NOT NULL DEFAULT 0,
            version         INTEGER NOT NULL DEFAULT 1,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (user_id, country_code, leave_type, year)
        )
    """)

    # ── 5. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            action          VARCHAR(100) NOT NULL,
            entity_type     VARCHAR(50) NOT NULL,
            entity_id       VARCHAR(64) NOT NULL,
            actor_user_id   UUID,
            actor_role      VARCHAR(50) NOT NULL,
            changes         JSONB,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_actor ON audit_trail(actor_user_id)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    tables = [
        "audit_trail",
        "leave_balances",
        "leave_approvals",
        "leave_requests",
        "employment_records",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
