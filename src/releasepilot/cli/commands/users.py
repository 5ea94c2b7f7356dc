"""User management command for ReleasePilot CLI."""

import typer
from sqlalchemy.exc import IntegrityError

from releasepilot.cli import app, console
from releasepilot.cli.utils import get_config, open_database
from releasepilot.storage import User, UserRepository, UserRole


@app.command("add-user")
def add_user(
    email: str = typer.Argument(..., help="Email address, used for notifications"),
    first_name: str | None = typer.Option(None, "--first-name", help="First name"),
    last_name: str | None = typer.Option(None, "--last-name", help="Last name"),
    role: UserRole = typer.Option(
        UserRole.VIEWER,
        "--role",
        "-r",
        help="Role in the release process",
    ),
) -> None:
    """Create a user.

    The printed id is what API clients send in the X-User-Id header.

    Examples:
        releasepilot add-user lead@example.com --role team_lead
        releasepilot add-user rm@example.com --role release_manager --first-name Ada
    """
    db = open_database(get_config())

    try:
        with db.session_scope() as session:
            repo = UserRepository(session)
            if repo.get_by_email(email) is not None:
                console.print(f"[red]Error:[/] A user with email {email} already exists")
                raise typer.Exit(1)

            user = repo.create(
                User(email=email, first_name=first_name, last_name=last_name, role=role)
            )
            user_id = user.id
    except IntegrityError as e:
        console.print(f"[red]Error:[/] Could not create user: {e.orig}")
        raise typer.Exit(1) from e
    finally:
        db.dispose()

    console.print(f"[green]✓[/] Created {role.value} {email}")
    console.print(f"[dim]User ID:[/] {user_id}")
