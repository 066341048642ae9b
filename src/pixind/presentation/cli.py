import typer
from ..adapters.parquet_export import export_view
from ..adapters.sql_store import SqlStore
from ..config import IndexerConfig

app = typer.Typer(help="Read-only queries over the materialized view.")

def _store(db_url: str | None) -> SqlStore:
    return SqlStore(db_url or IndexerConfig.from_env().db_url)

@app.command()
def stats(db_url: str = typer.Option(None, help="SQLAlchemy URL")):
    store = _store(db_url)
    g = store.global_stats()
    typer.echo(f"pixels placed: {g.total_pixels_placed}")
    typer.echo(f"shards deployed: {g.total_shards_deployed}")
    for s in store.sync_states():
        typer.echo(f"watermark[{s.label}]: {s.last_signature} @ {s.updated_at.isoformat()}")

@app.command()
def pixels(
    limit: int = 20,
    px: int = typer.Option(None),
    py: int = typer.Option(None),
    db_url: str = typer.Option(None, help="SQLAlchemy URL"),
):
    for p in _store(db_url).recent_pixels(limit, px=px, py=py):
        typer.echo(f"#{p.id} ({p.px},{p.py}) color=0x{p.color:06X} by {p.main_wallet} "
                   f"t={p.timestamp} loc={p.location_name or '-'}")

@app.command()
def shard(shard_x: int, shard_y: int, db_url: str = typer.Option(None, help="SQLAlchemy URL")):
    s = _store(db_url).shard_at(shard_x, shard_y)
    if s is None:
        typer.echo("not indexed"); raise typer.Exit(1)
    typer.echo(f"({s.shard_x},{s.shard_y}) owner={s.main_wallet} t={s.timestamp} loc={s.location_name or '-'}")

@app.command()
def shards(wallet: str, db_url: str = typer.Option(None, help="SQLAlchemy URL")):
    for s in _store(db_url).shards_by_owner(wallet):
        typer.echo(f"({s.shard_x},{s.shard_y}) t={s.timestamp} loc={s.location_name or '-'}")

@app.command()
def user(wallet: str, db_url: str = typer.Option(None, help="SQLAlchemy URL")):
    u = _store(db_url).user(wallet)
    if u is None:
        typer.echo("unknown wallet"); raise typer.Exit(1)
    typer.echo(f"{u.main_wallet}: pixels={u.pixels_placed_count} shards={u.shards_owned_count} "
               f"session={u.session_address or '-'}")

@app.command()
def export(out_dir: str = "view_parquet", db_url: str = typer.Option(None, help="SQLAlchemy URL")):
    store = _store(db_url)
    res = export_view(store.all_pixels(), store.all_shards(), out_dir)
    typer.echo(res)

if __name__ == "__main__":
    app()
