"""Records core: directory, enrollments, ledger, transfers, snapshots.

Revision ID: 0001_records_core
Revises:
Create Date: 2026-10-18

Creates:
- tenants, schools, persons, students, student profiles
- academic_years, class_groups
- enrollments, enrollment_class_memberships, enrollment_events
- assessment_scores, attendance_records, student_subject_results
- transfer_cases (one pending case per student)
- academic_record_snapshots (unique version per tenant/student/kind)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_records_core'
down_revision = None
branch_labels = None
depends_on = None


PENDING_TRANSFER_PREDICATE = "status IN ('requested', 'approved') AND deleted_at IS NULL"


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _tenant_fk():
    return sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False)


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def _deleted_at():
    return sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    # ==========================================================================
    # Directory
    # ==========================================================================
    op.create_table(
        'tenants',
        _uuid_pk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug', name='uq_tenants_slug'),
    )

    op.create_table(
        'schools',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('name', sa.String(255), nullable=False),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_schools_tenant', 'schools', ['tenant_id'])

    op.create_table(
        'persons',
        _uuid_pk(),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('preferred_name', sa.String(255), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('sex', sa.String(20), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'students',
        _uuid_pk(),
        sa.Column('person_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('global_status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['person_id'], ['persons.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'student_tenant_profiles',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_student_tenant_profiles_lookup', 'student_tenant_profiles', ['tenant_id', 'student_id'])

    op.create_table(
        'student_school_profiles',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('school_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('school_registration_code', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('entered_at', sa.Date(), nullable=True),
        sa.Column('left_at', sa.Date(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('updated_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_student_school_profiles_lookup', 'student_school_profiles', ['school_id', 'student_id'])

    op.create_table(
        'academic_years',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('school_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_academic_years_school_status', 'academic_years', ['school_id', 'status'])

    op.create_table(
        'class_groups',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('school_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('academic_year_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('grade_level', sa.String(100), nullable=True),
        sa.Column('shift', sa.String(50), nullable=True),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # Enrollments + ledger
    # ==========================================================================
    op.create_table(
        'enrollments',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('school_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('academic_year_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('enrolled_at', sa.Date(), nullable=False),
        sa.Column('left_at', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('context', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_by', postgresql.UUID(as_uuid=True), nullable=True),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_enrollments_student_school_status', 'enrollments', ['student_id', 'school_id', 'status'])
    op.create_index('idx_enrollments_tenant', 'enrollments', ['tenant_id'])

    op.create_table(
        'enrollment_class_memberships',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('class_group_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('valid_from', sa.Date(), nullable=False),
        sa.Column('valid_to', sa.Date(), nullable=True),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['class_group_id'], ['class_groups.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_class_memberships_enrollment', 'enrollment_class_memberships', ['enrollment_id', 'valid_to'])

    op.create_table(
        'enrollment_events',
        sa.Column('id', sa.BigInteger(), sa.Identity(always=False), nullable=False),
        _tenant_fk(),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('effective_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('actor_type', sa.String(20), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('from_class_group_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('to_class_group_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_enrollment_events_enrollment_effective', 'enrollment_events', ['enrollment_id', 'effective_at']
    )
    op.create_index('idx_enrollment_events_tenant', 'enrollment_events', ['tenant_id'])

    # ==========================================================================
    # Academic records (read by the snapshot engine)
    # ==========================================================================
    op.create_table(
        'assessment_scores',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('assessment_name', sa.String(255), nullable=False),
        sa.Column('assessment_type', sa.String(50), nullable=True),
        sa.Column('subject', sa.String(100), nullable=True),
        sa.Column('max_score', sa.Numeric(6, 2), nullable=True),
        sa.Column('weight', sa.Numeric(6, 2), nullable=True),
        sa.Column('score', sa.Numeric(6, 2), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_assessment_scores_enrollment', 'assessment_scores', ['enrollment_id'])

    op.create_table(
        'attendance_records',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('session_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('minutes_present', sa.Integer(), nullable=True),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_attendance_records_enrollment', 'attendance_records', ['enrollment_id'])

    op.create_table(
        'student_subject_results',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject', sa.String(100), nullable=False),
        sa.Column('grading_period', sa.String(100), nullable=True),
        sa.Column('final_score', sa.Numeric(6, 2), nullable=True),
        sa.Column('total_absences', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('result_status', sa.String(20), nullable=True),
        sa.Column('is_locked', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        _created_at(),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_subject_results_enrollment', 'student_subject_results', ['enrollment_id'])

    # ==========================================================================
    # transfer_cases
    # ==========================================================================
    op.create_table(
        'transfer_cases',
        _uuid_pk(),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('from_tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('from_school_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('from_enrollment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('to_tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('to_school_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('to_enrollment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(20), server_default=sa.text("'requested'"), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('snapshot_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        _deleted_at(),
        sa.Column('deleted_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_school_id'], ['schools.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['from_enrollment_id'], ['enrollments.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['to_tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_school_id'], ['schools.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['to_enrollment_id'], ['enrollments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_transfer_cases_from_tenant', 'transfer_cases', ['from_tenant_id', 'requested_at'])
    op.create_index('idx_transfer_cases_to_tenant', 'transfer_cases', ['to_tenant_id', 'requested_at'])
    op.create_index(
        'uq_transfer_cases_student_pending',
        'transfer_cases',
        ['student_id'],
        unique=True,
        postgresql_where=sa.text(PENDING_TRANSFER_PREDICATE),
    )

    # ==========================================================================
    # academic_record_snapshots
    # ==========================================================================
    op.create_table(
        'academic_record_snapshots',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('school_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.String(30), nullable=False),
        sa.Column('academic_year_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('as_of_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('is_final', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('payload_schema_version', sa.Integer(), nullable=False),
        sa.Column('payload_hash', sa.String(128), nullable=False),
        sa.Column('hash_algo', sa.String(20), nullable=False),
        sa.Column('hash_encoding', sa.String(20), nullable=False),
        sa.Column('source_type', sa.String(20), nullable=False),
        sa.Column('source_transfer_case_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finalized_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('revoke_reason', sa.Text(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        _deleted_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['source_transfer_case_id'], ['transfer_cases.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_snapshot_version',
        'academic_record_snapshots',
        ['tenant_id', 'student_id', 'kind', 'version'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'idx_snapshots_tenant_student_kind_status',
        'academic_record_snapshots',
        ['tenant_id', 'student_id', 'kind', 'status'],
    )
    op.create_index('idx_snapshots_transfer', 'academic_record_snapshots', ['source_transfer_case_id'])


def downgrade() -> None:
    op.drop_table('academic_record_snapshots')
    op.drop_table('transfer_cases')
    op.drop_table('student_subject_results')
    op.drop_table('attendance_records')
    op.drop_table('assessment_scores')
    op.drop_table('enrollment_events')
    op.drop_table('enrollment_class_memberships')
    op.drop_table('enrollments')
    op.drop_table('class_groups')
    op.drop_table('academic_years')
    op.drop_table('student_school_profiles')
    op.drop_table('student_tenant_profiles')
    op.drop_table('students')
    op.drop_table('persons')
    op.drop_table('schools')
    op.drop_table('tenants')
