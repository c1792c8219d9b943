"""initial create persons, cursilhistas and enrollments

Revision ID: 001
Revises: 
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PARTICIPATION_CLAUSE = sa.text("status IN ('confirmed', 'attended')")


def upgrade() -> None:
    op.create_table(
        'persons',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('document', sa.String(length=20), nullable=True),
        sa.Column('cpf', sa.String(length=11), nullable=False),
        sa.Column('whatsapp', sa.String(length=20), nullable=True),
        sa.Column('alt_contact', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=200), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('postal_code', sa.String(length=8), nullable=True),
        sa.Column('street', sa.String(length=200), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=2), nullable=True),
        sa.Column('church', sa.String(length=200), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    # CPF normalizado é a identidade da pessoa
    op.create_index('ix_persons_cpf', 'persons', ['cpf'], unique=True)

    op.create_table(
        'cursilhistas',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.Integer(), sa.ForeignKey('persons.id'), nullable=False),
        sa.Column('shirt_size', sa.String(length=10), nullable=True),
        sa.Column('dietary_restriction', sa.Text(), nullable=True),
        sa.Column('medical_restriction', sa.Text(), nullable=True),
        sa.Column('health_notes', sa.Text(), nullable=True),
        sa.Column('financial_responsible', sa.JSON(), nullable=True),
        sa.Column('accepts_terms', sa.Boolean(), nullable=False),
        sa.Column('terms_version', sa.String(length=100), nullable=True),
        sa.Column('terms_accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cursilhistas_person_id', 'cursilhistas', ['person_id'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('person_id', sa.Integer(), sa.ForeignKey('persons.id'), nullable=False),
        sa.Column('cursilhista_id', sa.Integer(), sa.ForeignKey('cursilhistas.id'), nullable=False),
        sa.Column('event_key', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_enrollments_person_id', 'enrollments', ['person_id'])
    op.create_index('ix_enrollments_event_key', 'enrollments', ['event_key'])

    # Uma única inscrição confirmada/participada por pessoa
    op.create_index(
        'uq_enrollments_person_participation',
        'enrollments',
        ['person_id'],
        unique=True,
        postgresql_where=PARTICIPATION_CLAUSE,
        sqlite_where=PARTICIPATION_CLAUSE,
    )


def downgrade() -> None:
    op.drop_index('uq_enrollments_person_participation', table_name='enrollments')
    op.drop_index('ix_enrollments_event_key', table_name='enrollments')
    op.drop_index('ix_enrollments_person_id', table_name='enrollments')
    op.drop_table('enrollments')

    op.drop_index('ix_cursilhistas_person_id', table_name='cursilhistas')
    op.drop_table('cursilhistas')

    op.drop_index('ix_persons_cpf', table_name='persons')
    op.drop_table('persons')
