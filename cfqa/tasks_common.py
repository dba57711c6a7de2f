from typing import Any, Iterator, Mapping

import numpy as np


def collect_rresult_ptrs(obj: Any) -> list[Any]:
    out: list[Any] = []
    if isinstance(obj, dict):
        for value in obj.values():
            out.extend(collect_rresult_ptrs(value))
        return out
    if isinstance(obj, (list, tuple)):
        for value in obj:
            out.extend(collect_rresult_ptrs(value))
        return out
    if hasattr(obj, "GetValue") and hasattr(obj, "GetPtr"):
        out.append(obj)
    return out


def run_graphs(actions: list[Any]) -> None:
    if not actions:
        return
    import ROOT

    run_graphs_impl = getattr(getattr(ROOT, "RDF", None), "RunGraphs", None)
    if run_graphs_impl:
        run_graphs_impl(actions)
        return
    # Fallback for ROOT builds without RunGraphs.
    for action in actions:
        action.GetValue()


def select_rows(table: Mapping[str, Any], mask: Any) -> dict[str, np.ndarray]:
    return {name: np.asarray(values)[mask] for name, values in table.items()}


def table_length(table: Mapping[str, Any]) -> int:
    for values in table.values():
        return len(values)
    return 0


def iter_run_blocks(collisions: Mapping[str, Any]) -> Iterator[tuple[int, np.ndarray]]:
    """Yield ``(run_number, row_indices)`` for each stretch of consecutive collisions of one run."""
    runs = np.asarray(collisions["fRunNumber"])
    if runs.size == 0:
        return
    starts = np.flatnonzero(np.diff(runs)) + 1
    bounds = np.concatenate(([0], starts, [runs.size]))
    for begin, end in zip(bounds[:-1], bounds[1:]):
        yield int(runs[begin]), np.arange(begin, end)


def rows_of_collisions(table: Mapping[str, Any], collision_ids: Any) -> np.ndarray:
    """Mask of the rows whose ``fIndexCollisions`` is in ``collision_ids``."""
    return np.isin(np.asarray(table["fIndexCollisions"]), np.asarray(collision_ids))


def concat_tables(chunks: list[Mapping[str, Any]], columns: list[str]) -> dict[str, np.ndarray]:
    if not chunks:
        return {name: np.zeros(0) for name in columns}
    return {name: np.concatenate([np.asarray(chunk[name]) for chunk in chunks]) for name in columns}
