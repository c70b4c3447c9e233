#!/usr/bin/env python3
"""
Streakr Management CLI

This script provides command-line management functionality for the Streakr application.
"""

import logging

import click
from flask import current_app
from flask.cli import ScriptInfo, with_appcontext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from streakr import create_app, db
from streakr.models import Question, Round, User
from streakr.services.lock_service import auto_sync_locks
from streakr.services.settlement_service import SettlementAction, settlement_service
from streakr.utils.errors import StreakrError
from streakr.utils.round_seed import load_rows, seed_rows


@click.group()
def cli():
    """Streakr Management CLI"""
    pass


def _season(season):
    return season or current_app.config["CURRENT_SEASON"]


# Round Management Commands
@cli.group(name="round")
def round_cmd():
    """Round management commands"""
    pass


@round_cmd.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--season", type=int, help="Season year (default: CURRENT_SEASON)")
@with_appcontext
def seed(path, season):
    """Seed rounds, games and questions from a JSON or CSV file"""
    season = _season(season)
    try:
        stats = seed_rows(load_rows(path), season)
        click.echo(
            f"✅ Seeded {season}: {stats['rounds']} rounds, {stats['games']} games, "
            f"{stats['created']} questions created, {stats['updated']} updated"
        )
        if stats["skipped"]:
            click.echo(f"⚠️  Skipped {stats['skipped']} incomplete rows")
    except StreakrError as e:
        click.echo(f"❌ {e.message}")
        raise SystemExit(1)
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error seeding rounds: {str(e)}")
        logging.error(f"Round seeding failed - SQL error: {e}")
        raise SystemExit(1)


@round_cmd.command(name="set-current")
@click.argument("round_number", type=int)
@click.option("--season", type=int, help="Season year (default: CURRENT_SEASON)")
@with_appcontext
def set_current(round_number, season):
    """Mark a round as the current round"""
    season = _season(season)
    target = Round.get(season, round_number)
    if not target:
        click.echo(f"❌ Round {round_number} not found in {season}!")
        raise SystemExit(1)

    target.make_current()
    db.session.commit()
    click.echo(f"✅ Current round is now {target.display_name} ({target.code})")


@round_cmd.command(name="list")
@click.option("--season", type=int, help="Season year (default: CURRENT_SEASON)")
@with_appcontext
def list_rounds(season):
    """List seeded rounds"""
    season = _season(season)
    rounds = Round.query.filter_by(season=season).order_by(Round.round_number).all()

    if not rounds:
        click.echo("No rounds found.")
        return

    for r in rounds:
        marker = "▶" if r.is_current else " "
        click.echo(f"  {marker} {r.code:<4} {r.display_name}")


# Question Commands
@cli.group()
def question():
    """Question commands"""
    pass


@question.command()
@click.argument("round_number", type=int)
@click.argument("question_id")
@click.argument("action", type=click.Choice([a.value for a in SettlementAction]))
@with_appcontext
def settle(round_number, question_id, action):
    """Lock, reopen or settle a question (safe to re-run)"""
    try:
        result = settlement_service.settle(round_number, question_id, action)
    except StreakrError as e:
        click.echo(f"❌ {e.message}")
        raise SystemExit(1)

    click.echo(
        f"✅ {result.question_id} (round {result.round_number}): "
        f"status={result.status} outcome={result.outcome or '-'}"
    )
    if result.status == "final":
        click.echo(
            f"   Scored: {len(result.applied)} applied, {len(result.skipped)} already scored, "
            f"{len(result.failed)} failed"
        )
    if result.failed:
        click.echo(f"⚠️  Failed user ids: {', '.join(str(u) for u in result.failed)}")
        click.echo("   Re-run this command to retry them.")


@question.command(name="list")
@click.argument("round_number", type=int)
@click.option("--season", type=int, help="Season year (default: CURRENT_SEASON)")
@with_appcontext
def list_questions(round_number, season):
    """List a round's questions and their status"""
    questions = (
        Question.query.filter_by(season=_season(season), round_number=round_number)
        .order_by(Question.game_id, Question.quarter, Question.question_id)
        .all()
    )

    if not questions:
        click.echo("No questions found.")
        return

    for q in questions:
        click.echo(
            f"  {q.question_id:<14} Q{q.quarter} {q.status:<8} {q.outcome or '-':<5} {q.prompt or ''}"
        )


# User Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command(name="create")
@click.argument("username")
@click.argument("email")
@click.argument("password")
@click.option("--display-name", help="Display name")
@click.option("--admin", is_flag=True, help="Grant admin rights")
@with_appcontext
def create_user(username, email, password, display_name, admin):
    """Create a user"""
    try:
        existing = User.query.filter(
            (User.username == username) | (User.email == email)
        ).first()

        if existing:
            click.echo(
                f"❌ User with username '{username}' or email '{email}' already exists!"
            )
            raise SystemExit(1)

        new_user = User(
            username=username,
            email=email,
            is_active=True,
            is_admin=admin,
            avatar_url=User.generate_avatar_url(username),
        )
        new_user.set_display_name(display_name)
        new_user.set_password(password)

        db.session.add(new_user)
        db.session.commit()

        click.echo(f"✅ Created {'admin ' if admin else ''}user '{username}' ({email})")

    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ User '{username}' already exists!")
        logging.error(f"User creation failed - integrity error: {e}")
        raise SystemExit(1)


@user.command(name="make-admin")
@click.argument("username")
@click.option("--revoke", is_flag=True, help="Remove admin rights instead")
@with_appcontext
def make_admin(username, revoke):
    """Grant or revoke admin rights"""
    target = User.query.filter_by(username=username).first()
    if not target:
        click.echo(f"❌ User '{username}' not found!")
        raise SystemExit(1)

    target.is_admin = not revoke
    db.session.commit()
    click.echo(f"✅ {username} is {'no longer' if revoke else 'now'} an admin")


# Streak Commands
@cli.group()
def streak():
    """Streak commands"""
    pass


@streak.command()
@click.argument("username")
@with_appcontext
def show(username):
    """Show a user's streak record"""
    target = User.query.filter_by(username=username).first()
    if not target:
        click.echo(f"❌ User '{username}' not found!")
        raise SystemExit(1)

    record = target.streak
    current = record.current_streak if record else 0
    longest = record.longest_streak if record else 0
    wins = record.total_wins if record else 0
    click.echo(f"{target.full_name}: current {current}, longest {longest}, wins {wins}")


# Lock Commands
@cli.group()
def locks():
    """Pick lock commands"""
    pass


@locks.command()
@click.argument("round_number", type=int, required=False)
@click.option("--season", type=int, help="Season year (default: CURRENT_SEASON)")
@with_appcontext
def sync(round_number, season):
    """Auto-lock a round's open questions if any of its games has started"""
    season = _season(season)
    if round_number is None:
        current = Round.get_current(season)
        if not current:
            click.echo("❌ No current round found")
            raise SystemExit(1)
        round_number = current.round_number

    try:
        result = auto_sync_locks(season, round_number)
    except StreakrError as e:
        click.echo(f"❌ {e.message}")
        raise SystemExit(1)

    click.echo(f"✅ Locked {result['locked']} question(s) in round {round_number}")
    if result.get("message"):
        click.echo(f"   {result['message']}")


# Database Commands
@cli.group(name="db")
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command(name="init")
@with_appcontext
def init_db():
    """Initialize database tables"""
    db.create_all()
    click.echo("✅ Database tables created successfully!")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    db.drop_all()
    db.create_all()
    click.echo("✅ Database reset successfully!")


def main():
    cli(obj=ScriptInfo(create_app=create_app))


if __name__ == "__main__":
    main()
