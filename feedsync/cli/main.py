import click
import logging
from datetime import timedelta
from rich.console import Console
from rich.table import Table

from ..config.manager import ConfigManager
from ..database.connection import DatabaseManager
from ..database.models import CalendarFeed
from ..errors import FeedSyncError
from ..integrations.google_oauth import GoogleOAuthClient
from ..services.auth_service import AuthService
from ..services.calendar_sync_service import CalendarSyncService
from ..services.token_manager import TokenManager

console = Console()
config_manager = ConfigManager()


def init_database() -> DatabaseManager:
    db = DatabaseManager(config_manager.get('app.database_url'))
    db.init_database()
    return db


def init_sync_service(db: DatabaseManager) -> CalendarSyncService:
    """Build the sync service from configuration"""
    token_manager = TokenManager(
        db,
        client_id=config_manager.get('google.client_id'),
        client_secret=config_manager.get('google.client_secret'),
        scopes=config_manager.get('google.scopes'),
    )
    oauth_client = GoogleOAuthClient(
        client_id=config_manager.get('google.client_id'),
        client_secret=config_manager.get('google.client_secret'),
        redirect_uri=config_manager.get('google.redirect_uri'),
        scopes=config_manager.get('google.scopes'),
    )
    return CalendarSyncService(
        db,
        token_manager,
        oauth_client,
        timezone=config_manager.get('app.timezone'),
        page_size=config_manager.get('app.sync_page_size'),
        default_strategy=config_manager.get('app.recurrence_strategy'),
    )


@click.group()
@click.option('--config', '-c', help='Path to .env file')
def cli(config):
    """feedsync - mirror Google Calendar feeds into a local database"""
    global config_manager
    if config:
        config_manager = ConfigManager(config)
    logging.basicConfig(level=config_manager.get('development.log_level', 'INFO'))


@cli.command()
def setup():
    """Run the setup wizard"""
    config_manager.setup_wizard()


@cli.command('init-db')
def init_db():
    """Create the database tables"""
    db = init_database()
    console.print(f"[green]Database ready at {db.database_url}[/green]")


@cli.command('create-session')
@click.argument('user_id')
def create_session(user_id):
    """Issue an API session token for USER_ID"""
    db = init_database()
    auth_service = AuthService(db, timedelta(hours=config_manager.get('app.session_ttl_hours', 24)))
    token = auth_service.create_session(user_id)
    console.print(token)


@cli.command()
@click.option('--user', 'user_id', help='Only show feeds owned by this user')
def feeds(user_id):
    """List calendar feeds"""
    db = init_database()
    with db.transaction() as session:
        query = session.query(CalendarFeed)
        if user_id:
            query = query.filter(CalendarFeed.user_id == user_id)
        rows = [feed.to_dict() for feed in query.order_by(CalendarFeed.name).all()]

    table = Table(title="Calendar Feeds")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Calendar")
    table.add_column("Strategy")
    table.add_column("Last Sync")
    table.add_column("Error", style="red")
    for row in rows:
        table.add_row(row['id'], row['name'], row['url'] or '', row['recurrence_strategy'],
                      row['last_sync'] or 'never', row['error'] or '')
    console.print(table)


@cli.command()
@click.argument('feed_id')
@click.option('--user', 'user_id', required=True, help='Owner of the feed')
def resync(feed_id, user_id):
    """Replace a feed's events with the current year from Google"""
    if not config_manager.validate():
        raise click.Abort()

    db = init_database()
    sync_service = init_sync_service(db)
    try:
        with console.status(f"Syncing feed {feed_id}..."):
            status = sync_service.resync_feed(user_id, feed_id)
    except FeedSyncError as e:
        console.print(f"[bold red]{e.message}[/bold red]")
        raise click.exceptions.Exit(1)

    console.print(
        f"[bold green]Synced {status.events_synced} events[/bold green] "
        f"({status.masters_synced} series, {status.skipped_events} skipped, "
        f"{status.events_deleted} replaced)"
    )
    if status.failed_masters:
        console.print(f"[yellow]Unresolved series: {', '.join(status.failed_masters)}[/yellow]")


@cli.command()
@click.option('--host', default='127.0.0.1')
@click.option('--port', default=8000, type=int)
def serve(host, port):
    """Run the API server"""
    import uvicorn
    uvicorn.run('feedsync.api.main:app', host=host, port=port,
                log_level=config_manager.get('development.log_level', 'INFO').lower())


if __name__ == '__main__':
    cli()
