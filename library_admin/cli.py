import click
from flask import Blueprint

from .auth import create_staff
from .errors import LibraryError
from .extensions import db
from .models import StaffRole

bp = Blueprint('admin', __name__, cli_group=None)


@bp.cli.command('init-db')
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo('Database initialised.')


@bp.cli.command('create-staff')
@click.argument('username')
@click.option('--first-name', prompt=True)
@click.option('--last-name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--role', type=click.Choice(StaffRole.ALL), default=StaffRole.LIBRARIAN, show_default=True)
@click.password_option()
def create_staff_command(username, first_name, last_name, email, role, password):
    """Register a staff account with a bcrypt-hashed password."""
    try:
        staff = create_staff(username, password, first_name, last_name, email, role)
    except LibraryError as e:
        raise click.ClickException(e.message)
    click.echo(f'Created {staff.role} {staff.username} (id {staff.id}).')
