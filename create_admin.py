"""Create an admin account from the command line."""
import typer
from sqlmodel import Session, select

from db import create_db_and_tables, engine
from models import Admin
from routers.auth import hash_password

app = typer.Typer(help="Admin account management")


@app.command()
def create(
    email: str = typer.Option(..., help="Login email for the admin"),
    name: str = typer.Option("Administrator", help="Display name"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    create_db_and_tables()
    email = email.lower()
    with Session(engine) as session:
        if session.exec(select(Admin).where(Admin.email == email)).first():
            raise typer.BadParameter(f"Admin {email} already exists", param_hint="--email")
        admin = Admin(name=name, email=email, password_hash=hash_password(password))
        session.add(admin)
        session.commit()
        session.refresh(admin)
        typer.echo(f"Created admin {admin.id} <{admin.email}>")


if __name__ == "__main__":
    app()
