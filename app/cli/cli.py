"""
Main CLI application using Typer.

CLI Name: catalyst-admin
"""
import typer

from app import __version__ as app_version

app = typer.Typer(
    name="catalyst-admin",
    help="Catalyst Launch Admin CLI - integration sync administration",
)

@app.command()
def version():
    """Show CLI version information."""
    typer.echo(f"Catalyst Launch CLI version {app_version}")

# Register command groups
from app.cli.commands import integrations
app.add_typer(integrations.app, name="integrations")
