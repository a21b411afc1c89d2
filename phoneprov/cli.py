import click
from flask import current_app

from .extensions import db
from .models import Role, User
from .retention import cleanup_provision_logs, cleanup_versions


def register_cli(app):
    @app.cli.command("cleanup-configs")
    @click.option("--days", type=int, default=None, help="Age in days (default CONFIG_RETENTION_DAYS).")
    @click.option("--dry-run", is_flag=True, help="List what would be removed.")
    def cleanup_configs(days, dry_run):
        """Remove old inactive config versions that no device uses."""
        if days is None:
            days = current_app.config["CONFIG_RETENTION_DAYS"]
        ids = cleanup_versions(days, dry_run=dry_run)
        verb = "Would remove" if dry_run else "Removed"
        click.echo(f"{verb} {len(ids)} config versions older than {days} days")
        for version_id in ids:
            click.echo(f"  {version_id}")

    @app.cli.command("cleanup-provision-logs")
    @click.option("--days", type=int, default=None, help="Age in days (default PROVISION_LOG_RETENTION_DAYS).")
    def cleanup_logs(days):
        """Remove provisioning log rows older than the retention window."""
        if days is None:
            days = current_app.config["PROVISION_LOG_RETENTION_DAYS"]
        deleted = cleanup_provision_logs(days)
        click.echo(f"Removed {deleted} provisioning log rows older than {days} days")

    @app.cli.command("create-user")
    @click.argument("email")
    @click.option("--name", default=None)
    @click.option("--role", type=click.Choice([Role.ADMIN, Role.OPERATOR, Role.VIEWER]), default=Role.VIEWER)
    @click.password_option()
    def create_user(email, name, role, password):
        """Add a login account."""
        email = email.lower().strip()
        if User.query.filter_by(email=email).first():
            raise click.ClickException(f"{email} already exists")
        user = User(name=name or email, email=email, role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {role} {email}")
