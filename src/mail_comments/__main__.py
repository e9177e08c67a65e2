"""Allow `python -m mail_comments` to invoke the CLI entry-point."""

from .cli import app


def main() -> None:
    """Dispatch to the Typer CLI."""
    app(prog_name="mail-comments")


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
