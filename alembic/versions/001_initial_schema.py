"""001 – Initial schema: companies, employees, time-off settings, requests, history.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("leave_category", ["Vacation", "Sick Day", "Personal (Unpaid)"]),
    ("request_status", ["Pending", "Approved", "Denied", "Withdrawn"]),
    ("history_action", ["Created", "Approved", "Denied", "Rescheduled", "Withdrawn"]),
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

    # ── 1. companies ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE companies (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name         VARCHAR(200) NOT NULL,
            owner_email  VARCHAR(255) NOT NULL,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. employees (balances are the leave ledger) ──────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id        UUID NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
            name              VARCHAR(200) NOT NULL,
            email             VARCHAR(255) NOT NULL,
            position          VARCHAR(200),
            department        VARCHAR(100),
            manager_email     VARCHAR(255),
            vacation_balance  NUMERIC(5,1) NOT NULL DEFAULT 0,
            sick_balance      NUMERIC(5,1) NOT NULL DEFAULT 0,
            personal_balance  NUMERIC(5,1) NOT NULL DEFAULT 0,
            is_active         BOOLEAN DEFAULT TRUE,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_employee_company_email UNIQUE (company_id, email)
        )
    """)
    op.execute(
        "CREATE INDEX ix_employees_company_manager ON employees(company_id, manager_email)"
    )

    # ── 3. time_off_policies ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE time_off_policies (
            company_id        UUID PRIMARY KEY REFERENCES companies(id) ON DELETE CASCADE,
            weekends          JSONB NOT NULL,
            reset_month       INTEGER NOT NULL,
            reset_day         INTEGER NOT NULL,
            vacation_max      INTEGER NOT NULL,
            sick_max          INTEGER NOT NULL,
            personal_max      INTEGER NOT NULL,
            reset_vacation    BOOLEAN NOT NULL,
            reset_sick        BOOLEAN NOT NULL,
            reset_personal    BOOLEAN NOT NULL,
            last_reset_year   INTEGER,
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_by_email  VARCHAR(255)
        )
    """)

    # ── 4. time_off_holidays ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE time_off_holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id  UUID NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
            name        VARCHAR(200) NOT NULL,
            date        DATE NOT NULL,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_holiday_company_date UNIQUE (company_id, date)
        )
    """)

    # ── 5. time_off_requests ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE time_off_requests (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id         UUID NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
            employee_id        UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            category           leave_category NOT NULL,
            start_date         DATE NOT NULL,
            end_date           DATE NOT NULL,
            total_days         INTEGER NOT NULL,
            status             request_status NOT NULL DEFAULT 'Pending',
            version            INTEGER NOT NULL DEFAULT 1,
            reason             TEXT,
            reviewed_by_email  VARCHAR(255),
            reviewed_at        TIMESTAMPTZ,
            reviewer_remarks   TEXT,
            requested_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_request_date_order CHECK (end_date >= start_date),
            CONSTRAINT ck_request_total_days CHECK (total_days >= 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_time_off_requests_company_status ON time_off_requests(company_id, status)"
    )
    op.execute("CREATE INDEX ix_time_off_requests_employee ON time_off_requests(employee_id)")

    # ── 6. time_off_request_history (append-only) ─────────────────────────
    op.execute("""
        CREATE TABLE time_off_request_history (
            id           BIGSERIAL PRIMARY KEY,
            request_id   UUID NOT NULL REFERENCES time_off_requests(id) ON DELETE CASCADE,
            action       history_action NOT NULL,
            actor_email  VARCHAR(255),
            timestamp    TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_request_history_request_ts "
        "ON time_off_request_history(request_id, timestamp)"
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in (
        "time_off_request_history",
        "time_off_requests",
        "time_off_holidays",
        "time_off_policies",
        "employees",
        "companies",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
