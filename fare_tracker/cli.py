from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

import click
from apscheduler.schedulers.blocking import BlockingScheduler

from .aggregator import summarize
from .config import Settings, get_settings
from .credentials import EnvSecretStore
from .factory import PROVIDERS, create_provider
from .kvstore import KeyValueStore
from .models import Route
from .notifier import LogSink, NotificationSink, Notifier, TelegramSink
from .orchestrator import RefreshOrchestrator, RefreshResult
from .scheduler import RefreshScheduler
from .store import PriceStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.insert(0, logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=settings.log_level,
        handlers=handlers,
        format=LOG_FORMAT,
        force=True,
    )


def build_store(settings: Settings) -> PriceStore:
    return PriceStore(KeyValueStore(settings.db_path, settings.namespace))


def build_orchestrator(settings: Settings, store: PriceStore) -> RefreshOrchestrator:
    sinks: List[NotificationSink] = [LogSink()]
    if settings.telegram_enabled:
        sinks.append(TelegramSink(settings.telegram_token, settings.telegram_chat_id))
    try:
        provider = create_provider(store.selected_provider(settings.provider), settings)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    return RefreshOrchestrator(store, provider, EnvSecretStore(), Notifier(sinks))


def _find(store: PriceStore, ref: str) -> Route:
    try:
        return store.find_route(ref)
    except LookupError as exc:
        raise click.ClickException(str(exc)) from exc


def _route_line(store: PriceStore, route: Route) -> str:
    flag = " " if route.enabled else "-"
    head = (
        f"{flag} {str(route.id)[:8]}  {route.display_name:<11} "
        f"{route.destination_name:<12} {route.outbound_date} → {route.return_date}"
    )
    history = store.history(route.id)
    fare = history.latest
    if fare is None:
        return f"{head}  no data"
    line = f"{head}  {fare.formatted_price:>12}  {fare.carrier}"
    change = store.price_change(route.id)
    if change is not None:
        line += f"  {change.arrow} {change.formatted}"
    return line


def _echo_result(result: Optional[RefreshResult]) -> None:
    if result is None:
        click.echo("A refresh is already running.")
        return
    if result.skipped_reason:
        raise click.ClickException(f"Refresh skipped: {result.skipped_reason}")
    click.echo(
        f"Fetched {len(result.fares)} fare(s), {len(result.errors)} error(s), "
        f"{len(result.notifications)} alert(s)."
    )
    for route_id, message in result.errors.items():
        click.echo(f"  {str(route_id)[:8]}: {message}", err=True)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Track round-trip fares and alert on price drops."""
    settings = get_settings()
    configure_logging(settings)
    ctx.obj = {"settings": settings, "store": build_store(settings)}


@cli.command()
@click.option("--now", is_flag=True, help="Refresh once before waiting for the schedule")
@click.pass_obj
def run(obj: dict, now: bool) -> None:
    """Refresh at the configured hours until interrupted."""
    settings, store = obj["settings"], obj["store"]
    orchestrator = build_orchestrator(settings, store)
    scheduler = RefreshScheduler(
        orchestrator.refresh_all,
        settings.refresh_hours,
        scheduler=BlockingScheduler(),
    )
    if now:
        _echo_result(orchestrator.refresh_all())
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        scheduler.stop()


@cli.command()
@click.pass_obj
def refresh(obj: dict) -> None:
    """Fetch prices for every enabled route once."""
    orchestrator = build_orchestrator(obj["settings"], obj["store"])
    _echo_result(orchestrator.refresh_all())


@cli.command()
@click.pass_obj
def status(obj: dict) -> None:
    """Show routes, latest fares and the last refresh time."""
    settings, store = obj["settings"], obj["store"]
    last = store.last_refreshed_at()
    click.echo(f"Provider: {store.selected_provider(settings.provider)}")
    click.echo(f"Last refresh: {last.isoformat(timespec='seconds') if last else 'never'}")
    errors = store.refresh_errors()
    for route in store.routes():
        click.echo(_route_line(store, route))
        if str(route.id) in errors:
            click.echo(f"    last error: {errors[str(route.id)]}")


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────


@cli.group()
def routes() -> None:
    """Manage monitored routes."""


@routes.command("list")
@click.pass_obj
def routes_list(obj: dict) -> None:
    store = obj["store"]
    for route in store.routes():
        click.echo(_route_line(store, route))


@routes.command("add")
@click.argument("origin")
@click.argument("destination")
@click.option("--name", default="", help="Destination display name")
@click.option("--outbound", "outbound", type=click.DateTime(["%Y-%m-%d"]), required=True)
@click.option("--return", "return_", type=click.DateTime(["%Y-%m-%d"]), required=True)
@click.option("--disabled", is_flag=True)
@click.pass_obj
def routes_add(obj: dict, origin: str, destination: str, name: str, outbound, return_, disabled: bool) -> None:
    """Add a route from ORIGIN to DESTINATION."""
    try:
        route = Route(
            origin=origin,
            destination=destination,
            destination_name=name or destination.upper(),
            outbound_date=outbound.date(),
            return_date=return_.date(),
            enabled=not disabled,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    obj["store"].upsert_route(route)
    click.echo(f"Added {route.display_name} ({route.id})")


@routes.command("edit")
@click.argument("ref")
@click.option("--origin", default=None)
@click.option("--destination", default=None)
@click.option("--name", default=None, help="Destination display name")
@click.option("--outbound", "outbound", type=click.DateTime(["%Y-%m-%d"]), default=None)
@click.option("--return", "return_", type=click.DateTime(["%Y-%m-%d"]), default=None)
@click.pass_obj
def routes_edit(obj: dict, ref: str, origin, destination, name, outbound, return_) -> None:
    """Change a route in place; its price history is kept."""
    store = obj["store"]
    route = _find(store, ref)
    updates = {
        "origin": origin,
        "destination": destination,
        "destination_name": name,
        "outbound_date": outbound.date() if outbound else None,
        "return_date": return_.date() if return_ else None,
    }
    updates = {k: v for k, v in updates.items() if v is not None}
    if not updates:
        raise click.UsageError("Nothing to change.")
    try:
        edited = Route.model_validate(route.model_copy(update=updates).model_dump())
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    store.upsert_route(edited)
    click.echo(f"Updated {edited.display_name} ({edited.outbound_date} → {edited.return_date})")


@routes.command("enable")
@click.argument("ref")
@click.pass_obj
def routes_enable(obj: dict, ref: str) -> None:
    route = obj["store"].set_enabled(_find(obj["store"], ref).id, True)
    click.echo(f"Enabled {route.display_name}")


@routes.command("disable")
@click.argument("ref")
@click.pass_obj
def routes_disable(obj: dict, ref: str) -> None:
    route = obj["store"].set_enabled(_find(obj["store"], ref).id, False)
    click.echo(f"Disabled {route.display_name}")


@routes.command("delete")
@click.argument("ref")
@click.confirmation_option(prompt="Delete the route and its price history?")
@click.pass_obj
def routes_delete(obj: dict, ref: str) -> None:
    route = _find(obj["store"], ref)
    obj["store"].delete_route(route.id)
    click.echo(f"Deleted {route.display_name}")


# ────────────────────────────────────────────────────────────────
# History and misc
# ────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("ref")
@click.pass_obj
def history(obj: dict, ref: str) -> None:
    """Print the stored fares of one route, newest first."""
    store = obj["store"]
    route = _find(store, ref)
    fares = sorted(store.history(route.id).fares, key=lambda f: f.fetched_at, reverse=True)
    if not fares:
        click.echo(f"{route.display_name}: no data")
        return
    for fare in fares:
        click.echo(
            f"{fare.fetched_at.isoformat(timespec='minutes')}  {fare.formatted_price:>12}  "
            f"{fare.carrier}  {fare.formatted_duration}  {fare.stops} stop(s)"
        )


@cli.command()
@click.pass_obj
def stats(obj: dict) -> None:
    """Price statistics per route."""
    df = summarize(obj["store"])
    if df.empty:
        click.echo("No price history yet.")
        return
    click.echo(df.drop(columns=["route_id"]).to_string(index=False, float_format="%.1f"))


@cli.command("open")
@click.argument("ref")
@click.pass_obj
def open_route(obj: dict, ref: str) -> None:
    """Open the public flight search for a route."""
    settings = obj["settings"]
    url = _find(obj["store"], ref).search_url(settings.currency, settings.locale)
    click.echo(url)
    click.launch(url)


@cli.command()
@click.argument("name", required=False, type=click.Choice(sorted(PROVIDERS)))
@click.pass_obj
def provider(obj: dict, name: Optional[str]) -> None:
    """Show or select the fare provider."""
    store = obj["store"]
    if name:
        store.select_provider(name)
    click.echo(store.selected_provider(obj["settings"].provider))


@cli.command()
@click.confirmation_option(prompt="Drop all price history and restore default routes?")
@click.pass_obj
def reset(obj: dict) -> None:
    obj["store"].reset()
    click.echo(f"Restored default routes ({date.today().isoformat()}).")


if __name__ == "__main__":
    cli()
