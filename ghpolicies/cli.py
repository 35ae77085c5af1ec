"""GitHub Policies CLI tool (ghpolicies)."""

import typer

app = typer.Typer(name="ghpolicies", help="GitHub Policies CLI")
db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


def _server_connection():
    """Open a server-level MySQL connection and return it with the database name."""
    import pymysql
    from sqlalchemy.engine import make_url
    from ghpolicies.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"Database management requires MySQL, got '{url.drivername}'", err=True)
        raise typer.Exit(code=1)

    conn = pymysql.connect(
        host=url.host or "localhost",
        port=url.port or 3306,
        user=url.username,
        password=url.password or "",
    )
    return conn, url.database


@db_app.command("create")
def db_create():
    """Create the MySQL database if it doesn't exist."""
    conn, db_name = _server_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.commit()
        typer.echo(f"Database '{db_name}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("init")
def db_init():
    """Create all tables."""
    import ghpolicies.models  # noqa: F401
    from ghpolicies.db.base import Base
    from ghpolicies.db.session import engine

    Base.metadata.create_all(bind=engine)
    typer.echo("Tables created")


@db_app.command("reset")
def db_reset():
    """Drop and recreate the database (DANGER)."""
    confirm = typer.confirm("This will DROP the entire database. Continue?")
    if not confirm:
        raise typer.Abort()

    conn, db_name = _server_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(f"DROP DATABASE IF EXISTS `{db_name}`")
        cursor.execute(f"CREATE DATABASE `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.commit()
        typer.echo(f"Database '{db_name}' reset")
    finally:
        conn.close()


@app.command("scan")
def scan(
    inline: bool = typer.Option(False, "--inline", help="Run in this process instead of queueing"),
):
    """Scan the organization now."""
    if not inline:
        from ghpolicies.tasks.celery_app import perform_scan
        task = perform_scan.delay()
        typer.echo(f"Scan queued (task {task.id})")
        return

    from ghpolicies.core.dependencies import build_scan_executor
    from ghpolicies.db.session import SessionLocal
    from ghpolicies.tasks.celery_app import process_actions_for_scan

    db = SessionLocal()
    try:
        result = build_scan_executor(db, enqueue_remediation=process_actions_for_scan.delay).execute()
    finally:
        db.close()
    typer.echo(result)
    if result["status"] != "completed":
        raise typer.Exit(code=1)


@app.command("remediate")
def remediate(
    scan_id: int = typer.Argument(..., help="Scan whose violations should be remediated"),
):
    """Run the configured actions for a scan in this process."""
    from ghpolicies.core.dependencies import build_action_service
    from ghpolicies.db.session import SessionLocal

    db = SessionLocal()
    try:
        summary = build_action_service(db).process_actions_for_scan(scan_id)
    finally:
        db.close()
    for status, count in summary.items():
        typer.echo(f"  {status}: {count}")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("ghpolicies.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
