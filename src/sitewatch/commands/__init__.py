"""Built-in Typer sub-command groups registered by :func:`sitewatch.app.main`."""
