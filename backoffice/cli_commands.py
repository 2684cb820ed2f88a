"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables (optionally dropping them first)
- flask create-admin: Create an ADMIN user
"""

import click
from backoffice.database import get_session, create_schema, drop_schema
from backoffice.exceptions import BackofficeError


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables first')
    def init_db_command(drop):
        """Create database tables."""
        if drop:
            click.confirm('This deletes ALL data. Continue?', abort=True)
            drop_schema()
            click.echo('Dropped all tables.')
        create_schema()
        click.echo(click.style('Database schema is up to date.', fg='green'))

    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--name', prompt=True, help='Display name')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
    def create_admin(email, name, password):
        """Create an ADMIN user for the back-office."""
        from backoffice.services.user_service import create_user

        try:
            user = create_user(get_session(), {
                'email': email,
                'name': name,
                'password': password,
                'role': 'ADMIN',
            })
        except BackofficeError as e:
            raise click.ClickException(e.message)

        click.echo(click.style('Administrator created.', fg='green', bold=True))
        click.echo(f'   Email: {user.email}')
        click.echo(f'   ID: {user.id}')
