"""
cli.py - Flask CLI commands
    flask init-db
    flask create-admin EMAIL PASSWORD
    flask report-cards recalculate-ranks [--class-id --period --school-year]
    flask report-cards refresh-details
    flask parents create-missing
"""

import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from extensions import db, bcrypt
from models import ReportCard, User
from services import ranking
from services.accounts import create_missing_parents
from services.averages import compute_average, period_grades, subject_breakdown

report_cards_cli = AppGroup('report-cards', help='Report card maintenance.')
parents_cli = AppGroup('parents', help='Parent account maintenance.')


@click.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (use `flask db upgrade` once migrations exist)."""
    db.create_all()
    click.echo("✅ Database tables created")


@click.command('create-admin')
@with_appcontext
@click.argument('email')
@click.argument('password')
@click.option('--first-name', default='Admin')
@click.option('--last-name', default='Ecole')
def create_admin(email, password, first_name, last_name):
    """Create an administrator account."""
    email = email.strip().lower()
    existing = User.query.filter_by(email=email).first()
    if existing:
        raise click.ClickException(f"Account already exists: {existing.email} ({existing.role})")
    if len(password) < 6:
        raise click.ClickException("Password must be at least 6 characters.")

    admin = User(
        email=email,
        password=bcrypt.generate_password_hash(password).decode('utf-8'),
        role='admin',
        first_name=first_name,
        last_name=last_name,
    )
    db.session.add(admin)
    db.session.commit()
    click.echo(f"✅ Admin account created: {email}")
    click.echo("⚠️ IMPORTANT: Change this password after first login!")


@report_cards_cli.command('recalculate-ranks')
@click.option('--class-id', type=int, default=None)
@click.option('--period', default=None)
@click.option('--school-year', default=None)
def recalculate_ranks(class_id, period, school_year):
    """Re-rank one scope, or every scope that has report cards."""
    if class_id is not None:
        if not period or not school_year:
            raise click.UsageError("--period and --school-year are required with --class-id")
        cards = ranking.recalculate_ranks(class_id, period, school_year)
        click.echo(f"Class {class_id} {period} {school_year}: {len(cards)} report card(s) ranked")
        return

    results = ranking.recalculate_all_ranks()
    for (scope_class, scope_period, scope_year), cards in results.items():
        click.echo(f"Class {scope_class} {scope_period} {scope_year}: {len(cards)} report card(s) ranked")
    click.echo(f"✅ {len(results)} scope(s) re-ranked")


@report_cards_cli.command('refresh-details')
@click.option('--school-year', default=None)
def refresh_details(school_year):
    """Print the per-subject breakdown of every report card (read only)."""
    config = current_app.config
    query = ReportCard.query
    if school_year:
        query = query.filter_by(school_year=school_year)

    count = 0
    for card in query.order_by(ReportCard.school_year, ReportCard.period, ReportCard.id).all():
        click.echo(
            f"#{card.id} {card.student.get_full_name()} {card.period} {card.school_year}: "
            f"{card.average_display} {card.mention} {card.rank_display}"
        )
        subjects = subject_breakdown(
            period_grades(card.student_id, card.period),
            default_coefficients=config['SUBJECT_COEFFICIENT_DEFAULTS'],
            fallback_coefficient=config['DEFAULT_SUBJECT_COEFFICIENT'],
        )
        for entry in subjects:
            click.echo(
                f"    {entry['subject']['name']} (coef {entry['coefficient']}): "
                f"{entry['average']} over {entry['grade_count']} grade(s)"
            )
        current = compute_average(period_grades(card.student_id, card.period))
        if current is not None and current != card.average:
            click.echo(f"    ⚠️ grades changed since generation: current average {current}")
        count += 1
    click.echo(f"{count} report card(s) checked")


@parents_cli.command('create-missing')
def create_missing():
    """Create and link parent accounts from students' parent emails."""
    created, linked = create_missing_parents()
    click.echo(f"✅ {created} parent account(s) created, {linked} student(s) linked")


def register_cli(app):
    app.cli.add_command(init_db)
    app.cli.add_command(create_admin)
    app.cli.add_command(report_cards_cli)
    app.cli.add_command(parents_cli)
