"""SnowOps CLI: GPS simulator and telemetry maintenance.

Commands:
  serve         run the API (starts the simulator when enabled)
  init-db       create database tables
  routes        list the simulator route catalog
  simulate      run the GPS simulator in the foreground (or --dry-run offline)
  purge-points  delete GPS points older than a cutoff
  status        point counts and live vehicle status
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table


app = typer.Typer(
    name="snowops",
    help="Vehicle motion simulation and live telemetry for the snow-cleaning fleet.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_timestamp(value: str) -> datetime:
    """Parse RFC3339 / ISO-8601 into naive UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise typer.BadParameter(f"Not an RFC3339 timestamp: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the API server."""
    import uvicorn

    console.print(f"API running at [cyan]http://{host}:{port}[/cyan], press Ctrl+C to stop")
    uvicorn.run("snowops.main:app", host=host, port=port)


@app.command("init-db")
def init_db_command():
    """Create database tables (enables PostGIS on PostgreSQL)."""
    from snowops.database import init_db

    try:
        with console.status("[bold]Creating tables..."):
            init_db()
    except Exception as e:
        console.print(f"[red]Database initialization failed: {e}[/red]")
        raise typer.Exit(1)
    console.print("[green]Database ready.[/green]")


@app.command("routes")
def routes(
    config: Optional[str] = typer.Option(None, "--config", help="Routes YAML (default: ROUTES_CONFIG)"),
):
    """List the routes the simulator can drive."""
    from snowops.config import settings
    from snowops.modules.path_catalog import SimulatorConfigError, load_path_catalog

    try:
        catalog = load_path_catalog(config or settings.ROUTES_CONFIG)
    except SimulatorConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not len(catalog):
        console.print("[yellow]No routes configured.[/yellow]")
        raise typer.Exit(1)

    table = Table(title="Simulator routes")
    table.add_column("Route")
    table.add_column("Waypoints", justify="right")
    table.add_column("Segments", justify="right")
    table.add_column("Length (km)", justify="right")
    for path in catalog:
        style = None if path.is_traversable else "red"
        table.add_row(
            path.name,
            str(len(path.waypoints)),
            str(path.segment_count),
            f"{path.length_meters / 1000:.2f}",
            style=style,
        )
    console.print(table)


@app.command("simulate")
def simulate(
    ticks: int = typer.Option(0, "--ticks", min=0, help="Stop after N ticks (0 = run until Ctrl+C)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute samples without a database"),
    plates: Optional[List[str]] = typer.Option(None, "--plate", help="Vehicle plate (repeatable)"),
    polygons: Optional[str] = typer.Option(None, "--polygons", help="Polygon YAML for --dry-run geofencing"),
    speed: Optional[float] = typer.Option(None, "--speed", help="Speed in km/h"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Tick interval in seconds"),
):
    """Run the GPS simulator in the foreground."""
    from snowops.config import settings
    from snowops.modules.path_catalog import SimulatorConfigError, load_path_catalog

    speed_kmh = speed if speed is not None else settings.GPS_SIMULATOR_SPEED_KMH
    interval_seconds = interval if interval is not None else settings.GPS_SIMULATOR_INTERVAL_SECONDS

    try:
        catalog = load_path_catalog(settings.ROUTES_CONFIG)
        if dry_run:
            _simulate_dry_run(catalog, ticks or 10, polygons, speed_kmh, interval_seconds)
            return
        _simulate_live(catalog, ticks, plates, speed_kmh, interval_seconds)
    except SimulatorConfigError as e:
        console.print(f"[red]Simulator configuration error: {e}[/red]")
        raise typer.Exit(1)


def _simulate_dry_run(catalog, ticks: int, polygons: Optional[str], speed_kmh: float, interval_seconds: float):
    from snowops.config import settings
    from snowops.modules.geofence import GeofenceDetector, StaticCameraStore, StaticPolygonStore, load_static_stores
    from snowops.modules.motion_simulator import MotionSimulator

    if polygons:
        polygon_store, camera_store = load_static_stores(polygons)
    else:
        polygon_store, camera_store = StaticPolygonStore(), StaticCameraStore()
    detector = GeofenceDetector(polygon_store, camera_store)

    sim = MotionSimulator(
        uuid.uuid4(),
        catalog,
        speed_kmh=speed_kmh,
        interval_seconds=interval_seconds,
        route_policy=settings.GPS_SIMULATOR_ROUTE_POLICY,
        detector_factory=lambda db: detector,
        persist=None,
    )
    sim.start()

    table = Table(title=f"Dry run: {ticks} ticks at {speed_kmh:g} km/h every {interval_seconds:g}s")
    table.add_column("Tick", justify="right")
    table.add_column("Captured (UTC)")
    table.add_column("Route")
    table.add_column("Seg", justify="right")
    table.add_column("Lat", justify="right")
    table.add_column("Lon", justify="right")
    table.add_column("Heading", justify="right")
    table.add_column("Event")

    clock = _utcnow()
    for n in range(1, ticks + 1):
        clock += timedelta(seconds=interval_seconds)
        sample = sim.tick(clock)
        if sample is None:
            table.add_row(str(n), clock.strftime("%H:%M:%S"), "", "", "", "", "", "[red]dropped[/red]")
            continue
        event = sample.geofence_event
        table.add_row(
            str(n),
            clock.strftime("%H:%M:%S"),
            sample.payload.get("route", ""),
            str(sim.cursor.index),
            f"{sample.lat:.6f}",
            f"{sample.lon:.6f}",
            f"{sample.heading_deg:.1f}",
            f"[green]ENTRY {event['polygon_name']}[/green]" if event else "",
        )
    sim.stop()
    console.print(table)


def _simulate_live(catalog, ticks: int, plates: Optional[List[str]], speed_kmh: float, interval_seconds: float):
    from snowops.modules.telemetry_runtime import TelemetryRuntime

    runtime = TelemetryRuntime(
        catalog=catalog,
        plates=list(plates) if plates else None,
        speed_kmh=speed_kmh,
        interval_seconds=interval_seconds,
    )

    async def _run():
        await runtime.start()
        console.print(
            f"[green]Simulating {len(runtime.simulators)} vehicle(s)[/green], "
            + (f"{ticks} tick(s)" if ticks else "press Ctrl+C to stop")
        )
        try:
            if ticks:
                # Half an interval of slack so the last tick lands before stop
                await asyncio.sleep(ticks * interval_seconds + interval_seconds / 2)
            else:
                await asyncio.Event().wait()
        finally:
            await runtime.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass

    for plate, sim in runtime.simulators.items():
        stats = sim.stats
        console.print(
            f"  {plate}: [green]{stats['ticks_ok']} ok[/green]"
            f"  [red]{stats['ticks_failed']} failed[/red]"
            f"  {stats['entry_events']} geofence entries"
        )


@app.command("purge-points")
def purge_points_command(
    days: Optional[int] = typer.Option(None, "--days", help="Delete points older than N days"),
    older_than: Optional[str] = typer.Option(None, "--older-than", help="Delete points before this RFC3339 time"),
):
    """Delete GPS points older than a cutoff."""
    from snowops.database import SessionLocal
    from snowops.modules.retention import resolve_cutoff
    from snowops.modules.telemetry_store import delete_older_than

    try:
        cutoff = resolve_cutoff(
            older_than=_parse_timestamp(older_than) if older_than else None,
            days=days,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    db = SessionLocal()
    try:
        deleted = delete_older_than(db, cutoff)
        db.commit()
    except Exception as e:
        db.rollback()
        console.print(f"[red]Purge failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()
    console.print(f"[green]Deleted {deleted:,} GPS points[/green] captured before {cutoff.isoformat()}Z")


@app.command("status")
def status():
    """Show GPS point counts and live vehicle status."""
    from sqlalchemy import func

    from snowops.config import settings
    from snowops.database import SessionLocal
    from snowops.models.gps_point import GPSPoint
    from snowops.modules.live_status import LiveStatusResolver
    from snowops.modules.visibility import FULL_SCOPE

    db = SessionLocal()
    try:
        point_count = db.query(GPSPoint).count()
        latest = db.query(func.max(GPSPoint.captured_at)).scalar()

        console.print("[bold]Telemetry[/bold]")
        console.print(f"  Simulator: {'[green]enabled[/green]' if settings.simulator_enabled else '[dim]disabled[/dim]'}")
        console.print(f"  GPS points: {point_count:,}")
        if latest:
            age = _utcnow() - latest
            console.print(f"  Newest sample: {latest.isoformat()}Z ({int(age.total_seconds())}s ago)")
        else:
            console.print("  Newest sample: [yellow]No data yet[/yellow]")

        views = LiveStatusResolver().resolve(db, FULL_SCOPE)
        if not views:
            console.print("\n[dim]No vehicles registered.[/dim]")
            return

        table = Table(title="Live vehicles")
        table.add_column("Plate")
        table.add_column("Status")
        table.add_column("Position")
        table.add_column("Simulated")
        colors = {"IN_TRIP": "green", "IDLE": "yellow", "OFFLINE": "dim"}
        for v in views:
            color = colors.get(v.status.value, "white")
            position = f"{v.last_gps.lat:.5f}, {v.last_gps.lon:.5f}" if v.last_gps else "-"
            simulated = ("yes" if v.last_gps.is_simulated else "no") if v.last_gps else "-"
            table.add_row(v.plate_number, f"[{color}]{v.status.value}[/{color}]", position, simulated)
        console.print(table)
    finally:
        db.close()


if __name__ == "__main__":
    app()
