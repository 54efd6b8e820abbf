"""Initial migration - quizzes, attempts, progress and notifications

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# SQLAlchemy's Enum type persists member names
_ENUMS = {
    'role_enum': ('STUDENT', 'INSTRUCTOR', 'ADMIN'),
    'question_type_enum': ('MULTIPLE_CHOICE', 'TRUE_FALSE', 'SHORT_ANSWER', 'ESSAY'),
    'attempt_status_enum': ('IN_PROGRESS', 'COMPLETED', 'ABANDONED', 'TIMEOUT'),
    'item_status_enum': ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED'),
    'assignment_status_enum': ('NOT_STARTED', 'IN_PROGRESS', 'SUBMITTED', 'GRADED'),
    'achievement_kind_enum': ('BADGE', 'ACHIEVEMENT'),
    'notification_type_enum': ('QUIZ_AVAILABLE', 'QUIZ_GRADED', 'DEADLINE_REMINDER'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # ── Create enums ──────────────────────────────────────────────────
    for name, labels in _ENUMS.items():
        quoted = ", ".join(f"'{label}'" for label in labels)
        op.execute(f"""
            DO $$ BEGIN
                CREATE TYPE {name} AS ENUM ({quoted});
            EXCEPTION WHEN duplicate_object THEN null;
            END $$;
        """)

    # ── users table ───────────────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', _enum('role_enum'), nullable=False, server_default='STUDENT'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # ── quizzes table ─────────────────────────────────────────────────
    op.create_table(
        'quizzes',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('course_id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('attempts_allowed', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_results', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_correct_answers', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('randomize_questions', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('randomize_options', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('allow_backtracking', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('auto_submit', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('require_password', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('created_by', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
    )
    op.create_index('ix_quizzes_course_id', 'quizzes', ['course_id'])
    op.create_index('ix_quiz_course_active', 'quizzes', ['course_id', 'is_active'])
    op.create_index('ix_quiz_window', 'quizzes', ['start_date', 'end_date'])

    # ── questions / options ───────────────────────────────────────────
    op.create_table(
        'questions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('quiz_id', sa.UUID(), nullable=False),
        sa.Column('question_type', _enum('question_type_enum'), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('correct_answer', sa.Text(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['quiz_id'], ['quizzes.id'], ondelete='CASCADE'),
    )
    op.create_table(
        'question_options',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('question_id', sa.UUID(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id'], ondelete='CASCADE'),
    )

    # ── attempts / answers ────────────────────────────────────────────
    op.create_table(
        'attempts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('quiz_id', sa.UUID(), nullable=False),
        sa.Column('student_id', sa.UUID(), nullable=False),
        sa.Column('course_id', sa.UUID(), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('status', _enum('attempt_status_enum'), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('grade', sa.String(2), nullable=True),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_graded', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('graded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['quiz_id'], ['quizzes.id']),
        sa.ForeignKeyConstraint(['student_id'], ['users.id']),
        sa.UniqueConstraint('quiz_id', 'student_id', 'attempt_number', name='uq_attempt_quiz_student_number'),
    )
    op.create_index('ix_attempts_status', 'attempts', ['status'])
    op.create_index('ix_attempt_student_course', 'attempts', ['student_id', 'course_id'])

    op.create_table(
        'attempt_answers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('attempt_id', sa.UUID(), nullable=False),
        sa.Column('question_id', sa.UUID(), nullable=False),
        sa.Column('answer', sa.Text(), nullable=True),
        sa.Column('selected_options', sa.JSON(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('points_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id']),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_answer_attempt_question'),
    )

    # ── progress and its items ────────────────────────────────────────
    op.create_table(
        'progress',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('student_id', sa.UUID(), nullable=False),
        sa.Column('course_id', sa.UUID(), nullable=False),
        sa.Column('overall_progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['student_id'], ['users.id']),
        sa.UniqueConstraint('student_id', 'course_id', name='uq_student_course_progress'),
    )
    op.create_index('ix_progress_student_id', 'progress', ['student_id'])
    op.create_index('ix_progress_course_id', 'progress', ['course_id'])

    op.create_table(
        'material_progress',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('progress_id', sa.UUID(), nullable=False),
        sa.Column('material_id', sa.UUID(), nullable=False),
        sa.Column('status', _enum('item_status_enum'), nullable=False, server_default='NOT_STARTED'),
        sa.Column('percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_accessed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['progress_id'], ['progress.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('progress_id', 'material_id', name='uq_progress_material'),
    )
    op.create_table(
        'assignment_progress',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('progress_id', sa.UUID(), nullable=False),
        sa.Column('assignment_id', sa.UUID(), nullable=False),
        sa.Column('status', _enum('assignment_status_enum'), nullable=False, server_default='NOT_STARTED'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('grade', sa.String(10), nullable=True),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('max_score', sa.Float(), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['progress_id'], ['progress.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('progress_id', 'assignment_id', name='uq_progress_assignment'),
    )
    op.create_table(
        'quiz_progress',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('progress_id', sa.UUID(), nullable=False),
        sa.Column('quiz_id', sa.UUID(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('best_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('best_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', _enum('item_status_enum'), nullable=False, server_default='NOT_STARTED'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['progress_id'], ['progress.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['quiz_id'], ['quizzes.id']),
        sa.UniqueConstraint('progress_id', 'quiz_id', name='uq_progress_quiz'),
    )
    op.create_table(
        'achievements',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('progress_id', sa.UUID(), nullable=False),
        sa.Column('kind', _enum('achievement_kind_enum'), nullable=False),
        sa.Column('code', sa.String(100), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('icon', sa.String(50), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('earned_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['progress_id'], ['progress.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('progress_id', 'code', name='uq_progress_achievement_code'),
    )

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        'notifications',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('recipient_id', sa.UUID(), nullable=False),
        sa.Column('course_id', sa.UUID(), nullable=True),
        sa.Column('type', _enum('notification_type_enum'), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('metadata_json', sa.JSON(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id']),
    )
    op.create_index('ix_notifications_recipient_id', 'notifications', ['recipient_id'])


def downgrade() -> None:
    for table in (
        'notifications',
        'achievements',
        'quiz_progress',
        'assignment_progress',
        'material_progress',
        'progress',
        'attempt_answers',
        'attempts',
        'question_options',
        'questions',
        'quizzes',
        'users',
    ):
        op.drop_table(table)
    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
