#!/usr/bin/env python3
"""
GridGuessr Management CLI

This script provides command-line management functionality for the GridGuessr scoring service.
"""

import json
import logging

import click
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gridguessr import create_app, db
from gridguessr.errors import ScoringError
from gridguessr.models import Badge, BonusEvent, Prediction, Race, User
from gridguessr.services import scoring_service
from gridguessr.services.badges import seed_badges
from gridguessr.utils.timezone_utils import parse_timestamp

app = create_app()


def _echo_summary(summary):
    click.echo(f"✅ Scored: {summary['scoredCount']}")
    click.echo(f"   Updated: {summary['updatedCount']}, unchanged: {summary['skippedCount']}")
    if summary.get("badgesGranted") is not None:
        click.echo(f"   Badges granted: {summary['badgesGranted']}")
    click.echo(f"   Users recomputed: {summary['usersRecomputed']}")
    if summary["failedCount"]:
        click.echo(f"⚠️  Failed: {summary['failedCount']}")
        for error in summary["errors"]:
            click.echo(f"   {error['key']}: {error['reason']}")


@click.group()
def cli():
    """GridGuessr Management CLI"""
    pass


# Race Management Commands
@cli.group()
def race():
    """Race management commands"""
    pass


@race.command()
@click.argument("name")
@click.option("--season", type=int, required=True, help="Season year")
@click.option("--round", "round_number", type=int, help="Round number")
@click.option("--lock-time", help="Lock time (ISO-8601, UTC when no offset)")
@click.option("--wildcard", help="Wildcard yes/no question")
@with_appcontext
def create(name, season, round_number, lock_time, wildcard):
    """Create a new race"""
    try:
        race_obj = Race(
            name=name,
            season=season,
            round=round_number,
            lock_time=parse_timestamp(lock_time),
            status="open",
            wildcard_question=wildcard,
        )
        db.session.add(race_obj)
        db.session.commit()
        click.echo(f"✅ Created race {race_obj.id}: {season} R{round_number or '?'} {name}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating race: {str(e)}")
        logging.error(f"Race creation failed - SQL error: {e}")


@race.command(name="list")
@click.option("--season", type=int, help="Only races of this season")
@with_appcontext
def list_races(season):
    """List races"""
    query = Race.query
    if season:
        query = query.filter_by(season=season)
    races = query.order_by(Race.season.desc(), Race.round).all()

    if not races:
        click.echo("No races found.")
        return

    for r in races:
        predictions = r.predictions.count()
        click.echo(f"  {r.id}: {r.season} R{r.round} {r.name} [{r.status}] - {predictions} predictions")


# Scoring Commands
@cli.group()
def score():
    """Scoring commands"""
    pass


@score.command(name="race")
@click.argument("race_id", type=int)
@click.argument("result_file", type=click.File("r"))
@with_appcontext
def score_race(race_id, result_file):
    """Publish a race result from a JSON file and score the race"""
    try:
        payload = json.load(result_file)
    except json.JSONDecodeError as e:
        click.echo(f"❌ Invalid JSON in result file: {e}")
        return

    try:
        summary = scoring_service.publish_result(race_id, payload)
        click.echo(f"🏁 Race {race_id} scored")
        _echo_summary(summary)
    except ScoringError as e:
        db.session.rollback()
        click.echo(f"❌ {str(e)}")
        logging.error(f"Race scoring failed: {e}")


@score.command(name="bonus")
@click.argument("event_id", type=int)
@with_appcontext
def score_bonus(event_id):
    """Score a bonus event"""
    try:
        summary = scoring_service.score_bonus_event(event_id)
        click.echo(f"🎯 Bonus event {event_id} scored")
        _echo_summary(summary)
    except ScoringError as e:
        db.session.rollback()
        click.echo(f"❌ {str(e)}")
        logging.error(f"Bonus scoring failed: {e}")


@score.command(name="bonus-answers")
@click.argument("event_id", type=int)
@click.argument("answers_file", type=click.File("r"))
@with_appcontext
def bonus_answers(event_id, answers_file):
    """Set a bonus event answer key from a JSON file ({question_id: [option_ids]})"""
    try:
        scoring_service.set_bonus_answers(event_id, json.load(answers_file))
        click.echo(f"✅ Answer key set for bonus event {event_id}")
    except json.JSONDecodeError as e:
        click.echo(f"❌ Invalid JSON in answers file: {e}")
    except ScoringError as e:
        db.session.rollback()
        click.echo(f"❌ {str(e)}")


# Standings Commands
@cli.group()
def standings():
    """Standings commands"""
    pass


@standings.command()
@click.option("--user-id", "user_ids", type=int, multiple=True, help="User to recompute (repeatable)")
@with_appcontext
def recompute(user_ids):
    """Recompute total points from scratch (all users by default)"""
    summary = scoring_service.recompute_standings(list(user_ids))
    click.echo(f"✅ Recomputed {summary['usersRecomputed']} users")
    if summary["failedCount"]:
        click.echo(f"⚠️  Failed: {summary['failedCount']}")
        for error in summary["errors"]:
            click.echo(f"   user {error['key']}: {error['reason']}")


# Badge Commands
@cli.group()
def badges():
    """Badge commands"""
    pass


@badges.command()
@with_appcontext
def seed():
    """Create or update the badge catalog"""
    try:
        created = seed_badges()
        click.echo(f"✅ Badge catalog seeded ({created} new)")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error seeding badges: {str(e)}")


# User Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command()
@click.argument("username")
@click.option("--display-name", help="Display name")
@with_appcontext
def create_admin(username, display_name=None):
    """Create an admin user and print its API token"""
    try:
        if User.query.filter_by(username=username).first():
            click.echo(f"❌ User '{username}' already exists!")
            return

        admin = User(username=username, display_name=display_name, is_admin=True)
        token = admin.generate_api_token()
        db.session.add(admin)
        db.session.commit()

        click.echo(f"✅ Created admin user '{username}'")
        click.echo(f"   API token: {token}")
    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Error creating user: {str(e)}")


@user.command()
@click.argument("username")
@click.option("--token", help="Use this token instead of generating one")
@with_appcontext
def set_token(username, token):
    """Issue a new API token for a user"""
    target = User.query.filter_by(username=username).first()
    if not target:
        click.echo(f"❌ User '{username}' not found!")
        return

    if token:
        target.api_token = token
    else:
        token = target.generate_api_token()
    db.session.commit()
    click.echo(f"✅ New API token for '{username}': {token}")


@user.command()
@with_appcontext
def list_users():
    """List all users"""
    users = User.query.order_by(User.total_points.desc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("Users:")
    for u in users:
        admin = "🔑" if u.is_admin else "  "
        click.echo(f"  {admin} {u.full_name}: {u.total_points:g} pts ({u.bonus_points:g} bonus)")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


# Info Commands
@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🏎️  GridGuessr Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    click.echo(f"👥 Users: {User.query.count()}")
    click.echo(f"🏅 Badges defined: {Badge.query.count()}")

    race_count = Race.query.count()
    completed = Race.query.filter_by(status="completed").count()
    click.echo(f"🏁 Races: {completed}/{race_count} completed")

    unscored = Prediction.query.filter(Prediction.score.is_(None)).count()
    click.echo(f"📝 Unscored predictions: {unscored}")

    open_bonus = BonusEvent.query.filter(BonusEvent.status.in_(["open", "locked"])).count()
    click.echo(f"🎯 Bonus events awaiting scoring: {open_bonus}")


if __name__ == "__main__":
    with app.app_context():
        cli()
