"""hnswbridge command-line interface."""

from __future__ import annotations

import json
import logging

import click
import numpy as np

from hnswbridge.domain.errors import HnswBridgeError


@click.group()
@click.option("--config", "-c", default="config.yaml", help="Path to config YAML.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config: str, verbose: bool) -> None:
    """hnswbridge: batch-parallel k-NN search over an HNSW index."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _load_matrix(path: str) -> np.ndarray:
    data = np.load(path, allow_pickle=False)
    if data.ndim == 1:
        data = data.reshape(1, -1)
    return np.asarray(data, dtype=np.float32)


def _threads(settings, threads: int | None) -> int:
    return settings.batch.num_threads if threads is None else threads


@main.command()
@click.argument("vectors", type=click.Path(exists=True, dir_okay=False))
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--labels", "labels_path", type=click.Path(exists=True, dir_okay=False),
              help="Optional .npy array of integer labels (default: row numbers).")
@click.option("--threads", "-t", type=int, default=None,
              help="Worker threads (0 = all hardware threads; default from config).")
@click.pass_context
def build(
    ctx: click.Context, vectors: str, output: str, labels_path: str | None, threads: int | None
) -> None:
    """Build an index from a VECTORS .npy matrix and save it to OUTPUT."""
    from hnswbridge.config import build_index, load_settings

    settings = load_settings(ctx.obj["config"])
    data = _load_matrix(vectors)
    if labels_path:
        labels = np.load(labels_path, allow_pickle=False)
    else:
        labels = np.arange(data.shape[0], dtype=np.uint64)

    try:
        with build_index(settings) as index:
            index.add_points(data, labels, num_threads=_threads(settings, threads))
            index.save(output)
            count = index.current_count
    except HnswBridgeError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Indexed {count} vector(s) into {output}.")


@main.command()
@click.argument("index_path", metavar="INDEX", type=click.Path(exists=True, dir_okay=False))
@click.argument("queries", type=click.Path(exists=True, dir_okay=False))
@click.option("-k", default=10, show_default=True, help="Neighbours per query.")
@click.option("--threads", "-t", type=int, default=None,
              help="Worker threads (0 = all hardware threads; default from config).")
@click.option("--ef", type=int, default=None, help="Override the search beam width.")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON.")
@click.pass_context
def query(
    ctx: click.Context,
    index_path: str,
    queries: str,
    k: int,
    threads: int | None,
    ef: int | None,
    as_json: bool,
) -> None:
    """Print the K nearest labels for every row of a QUERIES .npy matrix."""
    from hnswbridge.config import load_settings, open_index

    settings = load_settings(ctx.obj["config"])
    data = _load_matrix(queries)

    try:
        with open_index(settings, index_path) as index:
            if ef is not None:
                index.set_ef(ef)
            rows = index.search_knn(data, k, num_threads=_threads(settings, threads))
    except HnswBridgeError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps([
            [{"label": hit.label, "distance": hit.distance} for hit in row]
            for row in rows
        ]))
        return

    for i, row in enumerate(rows):
        hits = ", ".join(f"{hit.label} ({hit.distance:.4f})" for hit in row)
        click.echo(f"{i}: {hits}")


@main.command()
@click.argument("index_path", metavar="INDEX", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def info(ctx: click.Context, index_path: str) -> None:
    """Show capacity, element count and file size of a saved INDEX."""
    from hnswbridge.config import load_settings, open_index

    settings = load_settings(ctx.obj["config"])
    try:
        with open_index(settings, index_path) as index:
            click.echo("=== Index ===")
            click.echo(f"  Engine:           {settings.engine.adapter}")
            click.echo(f"  Space:            {index.space.value}")
            click.echo(f"  Dimension:        {index.dim}")
            click.echo(f"  Elements:         {index.current_count}")
            click.echo(f"  Max elements:     {index.max_elements}")
            click.echo(f"  Replace deleted:  {index.allow_replace_deleted}")
            click.echo(f"  File size:        {index.index_file_size()} bytes")
    except HnswBridgeError as exc:
        raise click.ClickException(str(exc)) from exc


if __name__ == "__main__":
    main()
