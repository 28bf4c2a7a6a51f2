"""Create exam results engine tables.

Revision ID: 0001_exam_results_engine
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_exam_results_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


examkind = sa.Enum('exam', 'quiz', name='examkind')
conductscalekind = sa.Enum('five-point', 'percentage', 'points', name='conductscalekind')


def timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def fk(column: str, target: str, nullable: bool = False, ondelete: str = 'CASCADE') -> sa.Column:
    return sa.Column(
        column,
        sa.BigInteger(),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    """Create classes, students, exams, results, conduct and ledger tables."""
    op.create_table(
        'classes',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        *timestamps(),
    )
    op.create_table(
        'subjects',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        *timestamps(),
    )
    op.create_table(
        'students',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('student_name', sa.String(255), nullable=False),
        fk('class_id', 'classes.id', nullable=True, ondelete='SET NULL'),
        sa.Column('record_type', sa.String(20), nullable=False, server_default='student'),
        *timestamps(),
    )
    op.create_index('ix_students_class_id', 'students', ['class_id'])

    op.create_table(
        'exams',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('kind', examkind, nullable=False, server_default='exam'),
        sa.Column('is_released', sa.Boolean(), nullable=False, server_default=sa.false()),
        *timestamps(),
    )
    op.create_table(
        'exam_classes',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        fk('class_id', 'classes.id'),
        sa.Column('conduct_weightage', sa.DECIMAL(5, 2), nullable=True),
        sa.UniqueConstraint('exam_id', 'class_id', name='uq_exam_class'),
    )
    op.create_index('ix_exam_classes_exam_id', 'exam_classes', ['exam_id'])

    op.create_table(
        'exam_subjects',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        fk('subject_id', 'subjects.id'),
        sa.UniqueConstraint('exam_id', 'subject_id', name='uq_exam_subject'),
    )
    op.create_index('ix_exam_subjects_exam_id', 'exam_subjects', ['exam_id'])

    op.create_table(
        'exam_class_subjects',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        fk('class_id', 'classes.id'),
        fk('subject_id', 'subjects.id'),
        sa.UniqueConstraint('exam_id', 'class_id', 'subject_id', name='uq_exam_class_subject'),
    )
    op.create_index('ix_exam_class_subjects_exam_id', 'exam_class_subjects', ['exam_id'])

    op.create_table(
        'grading_bands',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        sa.Column('label', sa.String(10), nullable=False),
        sa.Column('min_mark', sa.DECIMAL(5, 2), nullable=False),
        sa.UniqueConstraint('exam_id', 'label', name='uq_grading_band_label'),
    )
    op.create_index('ix_grading_bands_exam_id', 'grading_bands', ['exam_id'])

    op.create_table(
        'conduct_criteria',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('scale_kind', conductscalekind, nullable=False, server_default='percentage'),
        sa.Column('max_score', sa.DECIMAL(7, 2), nullable=True),
        sa.CheckConstraint('max_score IS NULL OR (max_score >= 1 AND max_score <= 1000)', name='ck_conduct_max_score'),
        *timestamps(),
    )

    op.create_table(
        'exam_roster',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        fk('student_id', 'students.id'),
        sa.Column('class_id', sa.BigInteger(), nullable=True),
        sa.UniqueConstraint('exam_id', 'student_id', name='uq_exam_roster_student'),
        *timestamps(),
    )
    op.create_index('ix_exam_roster_exam_id', 'exam_roster', ['exam_id'])

    op.create_table(
        'exam_exclusions',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        sa.Column('class_id', sa.BigInteger(), nullable=True),
        fk('student_id', 'students.id'),
        sa.UniqueConstraint('exam_id', 'student_id', name='uq_exam_exclusion'),
        *timestamps(),
    )
    op.create_index('ix_exam_exclusions_exam_id', 'exam_exclusions', ['exam_id'])

    op.create_table(
        'subject_opt_outs',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        fk('subject_id', 'subjects.id'),
        fk('student_id', 'students.id'),
        sa.UniqueConstraint('exam_id', 'subject_id', 'student_id', name='uq_subject_opt_out'),
        *timestamps(),
    )
    op.create_index('ix_subject_opt_outs_exam_id', 'subject_opt_outs', ['exam_id'])

    op.create_table(
        'exam_results',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        fk('subject_id', 'subjects.id'),
        fk('student_id', 'students.id'),
        sa.Column('mark', sa.DECIMAL(5, 2), nullable=True),
        sa.Column('grade', sa.String(10), nullable=True),
        sa.CheckConstraint('mark IS NULL OR (mark >= 0 AND mark <= 100)', name='ck_exam_result_mark'),
        sa.UniqueConstraint('exam_id', 'subject_id', 'student_id', name='uq_exam_result'),
        *timestamps(),
    )
    op.create_index('ix_exam_results_exam_id', 'exam_results', ['exam_id'])
    op.create_index('ix_exam_results_student_id', 'exam_results', ['student_id'])

    op.create_table(
        'conduct_entries',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        fk('exam_id', 'exams.id'),
        sa.Column('teacher_id', sa.BigInteger(), nullable=True),
        fk('student_id', 'students.id'),
        fk('subject_id', 'subjects.id', nullable=True),
        sa.Column('discipline', sa.DECIMAL(7, 2), nullable=True),
        sa.Column('effort', sa.DECIMAL(7, 2), nullable=True),
        sa.Column('participation', sa.DECIMAL(7, 2), nullable=True),
        sa.Column('motivational_level', sa.DECIMAL(7, 2), nullable=True),
        sa.Column('character_score', sa.DECIMAL(7, 2), nullable=True),
        sa.Column('leadership', sa.DECIMAL(7, 2), nullable=True),
        *timestamps(),
    )
    op.create_index('ix_conduct_entries_exam_id', 'conduct_entries', ['exam_id'])
    op.create_index('ix_conduct_entries_teacher_id', 'conduct_entries', ['teacher_id'])
    op.create_index('ix_conduct_entries_student_id', 'conduct_entries', ['student_id'])


def downgrade() -> None:
    """Drop all exam results engine tables."""
    for table in (
        'conduct_entries',
        'exam_results',
        'subject_opt_outs',
        'exam_exclusions',
        'exam_roster',
        'conduct_criteria',
        'grading_bands',
        'exam_class_subjects',
        'exam_subjects',
        'exam_classes',
        'exams',
        'students',
        'subjects',
        'classes',
    ):
        op.drop_table(table)

    conductscalekind.drop(op.get_bind(), checkfirst=True)
    examkind.drop(op.get_bind(), checkfirst=True)
