"""001 – Initial schema: users, sites, absences, interventions, chat, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000+02:00
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    (
        "user_role",
        [
            "administrator",
            "rh",
            "purchase_department",
            "worker",
            "workshop",
            "conductor_of_work",
            "accounting",
            "design_office",
            "project_manager",
        ],
    ),
    ("email_provider", ["gmail", "outlook", "yahoo", "other"]),
    ("site_status", ["planning", "active", "on_hold", "completed", "cancelled"]),
    ("site_priority", ["low", "medium", "high", "critical"]),
    (
        "absence_type",
        ["vacation", "sick_leave", "personal_leave", "emergency", "training", "other"],
    ),
    ("absence_status", ["pending", "approved", "rejected", "cancelled", "declared"]),
    ("absence_request_type", ["request", "declaration"]),
    ("intervention_priority", ["low", "medium", "high", "urgent"]),
    (
        "intervention_status",
        [
            "submitted",
            "transferred_to_workshop",
            "in_progress",
            "completed",
            "cancelled",
            "rejected",
        ],
    ),
    ("conversation_type", ["direct", "group"]),
    (
        "message_type",
        ["text", "image", "video", "document", "audio", "contact", "location", "system", "email"],
    ),
    ("message_status", ["sending", "sent", "delivered", "read", "failed"]),
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
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')
    op.execute('CREATE EXTENSION IF NOT EXISTS "pg_trgm"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            first_name      VARCHAR(50)  NOT NULL,
            last_name       VARCHAR(50)  NOT NULL,
            email           VARCHAR(255) NOT NULL UNIQUE,
            password_hash   VARCHAR(255) NOT NULL,
            role            user_role NOT NULL DEFAULT 'worker',
            phone           VARCHAR(30),
            address         VARCHAR(255),
            profile_image   VARCHAR(500),
            email_provider  email_provider NOT NULL DEFAULT 'other',
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            last_login      TIMESTAMPTZ,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_users_email ON users(email)")

    # ── 2. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id      UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            token_hash   VARCHAR(512) NOT NULL,
            ip_address   INET,
            user_agent   TEXT,
            expires_at   TIMESTAMPTZ NOT NULL,
            is_revoked   BOOLEAN DEFAULT FALSE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_user_sessions_token_hash ON user_sessions(token_hash)")
    op.execute("CREATE INDEX ix_user_sessions_user ON user_sessions(user_id)")

    # ── 3. pending_registrations ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE pending_registrations (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            email       VARCHAR(255) NOT NULL,
            otp_code    VARCHAR(6) NOT NULL,
            user_data   JSONB NOT NULL,
            attempts    INTEGER NOT NULL DEFAULT 0,
            expires_at  TIMESTAMPTZ NOT NULL,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_pending_registrations_email ON pending_registrations(email)")

    # ── 4. sites ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE sites (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name                VARCHAR(100) NOT NULL,
            description         VARCHAR(500),
            address             VARCHAR(200) NOT NULL,
            city                VARCHAR(50)  NOT NULL,
            postal_code         VARCHAR(5)   NOT NULL,
            start_date          DATE NOT NULL,
            expected_end_date   DATE NOT NULL,
            actual_end_date     DATE,
            status              site_status NOT NULL DEFAULT 'planning',
            budget              NUMERIC(14, 2) NOT NULL,
            current_cost        NUMERIC(14, 2) NOT NULL DEFAULT 0,
            priority            site_priority NOT NULL DEFAULT 'medium',
            project_manager_id  UUID NOT NULL REFERENCES users(id),
            client_name         VARCHAR(100),
            client_contact      VARCHAR(30),
            client_email        VARCHAR(255),
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_sites_budget_non_negative CHECK (budget >= 0),
            CONSTRAINT ck_sites_cost_non_negative   CHECK (current_cost >= 0)
        )
    """)
    op.execute("CREATE INDEX ix_sites_name_trgm ON sites USING gin (name gin_trgm_ops)")

    # ── 5. site_assignments ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE site_assignments (
            site_id  UUID NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
            user_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            PRIMARY KEY (site_id, user_id)
        )
    """)

    # ── 6. absences ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE absences (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id           UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type              absence_type NOT NULL,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            is_full_day       BOOLEAN NOT NULL DEFAULT TRUE,
            start_time        VARCHAR(5),
            end_time          VARCHAR(5),
            day_count         NUMERIC(5, 1) NOT NULL,
            reason            VARCHAR(500),
            status            absence_status NOT NULL DEFAULT 'pending',
            request_type      absence_request_type NOT NULL DEFAULT 'request',
            approved_by_id    UUID REFERENCES users(id) ON DELETE SET NULL,
            approved_at       TIMESTAMPTZ,
            rejection_reason  VARCHAR(500),
            created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_absences_date_range CHECK (end_date >= start_date),
            CONSTRAINT ck_absences_day_count  CHECK (day_count >= 0.5)
        )
    """)
    op.execute("CREATE INDEX ix_absences_user_start ON absences(user_id, start_date)")
    op.execute("CREATE INDEX ix_absences_status     ON absences(status)")

    # ── 7. intervention_requests ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE intervention_requests (
            id                         UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            title                      VARCHAR(200)  NOT NULL,
            description                VARCHAR(2000) NOT NULL,
            priority                   intervention_priority NOT NULL DEFAULT 'medium',
            status                     intervention_status NOT NULL DEFAULT 'submitted',
            requested_by_id            UUID NOT NULL REFERENCES users(id),
            site_id                    UUID REFERENCES sites(id) ON DELETE SET NULL,
            equipment_location         VARCHAR(300),
            equipment_details          VARCHAR(500),
            is_emergency               BOOLEAN NOT NULL DEFAULT FALSE,
            attachments                JSONB NOT NULL DEFAULT '[]'::jsonb,
            workshop_transferred_at    TIMESTAMPTZ,
            workshop_assigned_to_id    UUID REFERENCES users(id) ON DELETE SET NULL,
            estimated_completion_date  TIMESTAMPTZ,
            actual_completion_date     TIMESTAMPTZ,
            rejection_reason           VARCHAR(500),
            workshop_notes             VARCHAR(2000),
            created_at                 TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at                 TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_intervention_requests_status       ON intervention_requests(status)")
    op.execute("CREATE INDEX ix_intervention_requests_requested_by ON intervention_requests(requested_by_id)")

    # ── 8. intervention_log_entries ───────────────────────────────────────
    op.execute("""
        CREATE TABLE intervention_log_entries (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id       UUID NOT NULL REFERENCES intervention_requests(id) ON DELETE CASCADE,
            action           VARCHAR(100) NOT NULL,
            performed_by_id  UUID REFERENCES users(id) ON DELETE SET NULL,
            notes            VARCHAR(500),
            timestamp        TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_intervention_log_entries_request ON intervention_log_entries(request_id)")

    # ── 9. intervention_comments ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE intervention_comments (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id        UUID NOT NULL REFERENCES intervention_requests(id) ON DELETE CASCADE,
            user_id           UUID NOT NULL REFERENCES users(id),
            text              VARCHAR(1000) NOT NULL,
            is_from_workshop  BOOLEAN NOT NULL DEFAULT FALSE,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_intervention_comments_request ON intervention_comments(request_id)")

    # ── 10. conversations ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE conversations (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            type             conversation_type NOT NULL DEFAULT 'direct',
            name             VARCHAR(100),
            description      VARCHAR(500),
            created_by_id    UUID NOT NULL REFERENCES users(id),
            last_message_id  UUID,  -- FK added after messages table
            last_activity    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            is_active        BOOLEAN NOT NULL DEFAULT TRUE,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_conversations_last_activity ON conversations(last_activity)")

    # ── 11. conversation_participants ─────────────────────────────────────
    op.execute("""
        CREATE TABLE conversation_participants (
            conversation_id  UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            user_id          UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            is_pinned        BOOLEAN NOT NULL DEFAULT FALSE,
            is_archived      BOOLEAN NOT NULL DEFAULT FALSE,
            joined_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (conversation_id, user_id)
        )
    """)
    op.execute("CREATE INDEX ix_conversation_participants_user ON conversation_participants(user_id)")

    # ── 12. messages ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE messages (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            conversation_id  UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            sender_id        UUID NOT NULL REFERENCES users(id),
            content          VARCHAR(5000) NOT NULL DEFAULT '',
            type             message_type NOT NULL DEFAULT 'text',
            status           message_status NOT NULL DEFAULT 'sent',
            attachments      JSONB NOT NULL DEFAULT '[]'::jsonb,
            reply_to_id      UUID REFERENCES messages(id) ON DELETE SET NULL,
            reactions        JSONB NOT NULL DEFAULT '{}'::jsonb,
            read_by          JSONB NOT NULL DEFAULT '{}'::jsonb,
            metadata         JSONB NOT NULL DEFAULT '{}'::jsonb,
            edited_at        TIMESTAMPTZ,
            is_deleted       BOOLEAN NOT NULL DEFAULT FALSE,
            deleted_at       TIMESTAMPTZ,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_messages_conversation_created ON messages(conversation_id, created_at)")
    op.execute("CREATE INDEX ix_messages_sender               ON messages(sender_id)")
    op.execute("CREATE INDEX ix_messages_content_trgm ON messages USING gin (content gin_trgm_ops)")

    # Deferred FK: conversations.last_message_id → messages.id
    op.execute("""
        ALTER TABLE conversations
            ADD CONSTRAINT fk_conversations_last_message_id
            FOREIGN KEY (last_message_id) REFERENCES messages(id) ON DELETE SET NULL
    """)

    # ── 13. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES users(id) ON DELETE SET NULL,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            ip_address   INET,
            user_agent   TEXT,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop the deferred FK before dropping messages / conversations
    op.execute(
        "ALTER TABLE conversations DROP CONSTRAINT IF EXISTS fk_conversations_last_message_id"
    )

    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "messages",
        "conversation_participants",
        "conversations",
        "intervention_comments",
        "intervention_log_entries",
        "intervention_requests",
        "absences",
        "site_assignments",
        "sites",
        "pending_registrations",
        "user_sessions",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    # Drop extensions
    op.execute('DROP EXTENSION IF EXISTS "pg_trgm"')
    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
