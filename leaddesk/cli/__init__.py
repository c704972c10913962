"""Terminal front end: configuration, HTTP backend and typer commands."""
