import os
from pathlib import Path
from typing import Any

import numpy as np


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(str(path)))


def ensure_parent(path: str) -> None:
    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)


def ao2d_frames(file_names: list[str], tree_name: str) -> list[tuple[str, str]]:
    """``(file, tree path in file)`` for the top-level tree and every ``DF_xxx/tree``."""
    import ROOT

    out: list[tuple[str, str]] = []
    for file_name in file_names:
        in_file = ROOT.TFile.Open(file_name)
        if not in_file or in_file.IsZombie():
            raise FileNotFoundError(f"Cannot open input file: {file_name}")
        if in_file.Get(tree_name):
            out.append((file_name, tree_name))
        for key in in_file.GetListOfKeys():
            name = key.GetName()
            if name.startswith("DF_") and in_file.Get(f"{name}/{tree_name}"):
                out.append((file_name, f"{name}/{tree_name}"))
        in_file.Close()
    return out


def ao2d_tree_paths(file_names: list[str], tree_name: str) -> list[str]:
    return [f"{file_name}/{tree_path}" for file_name, tree_path in ao2d_frames(file_names, tree_name)]


def input_files(input_file: str) -> list[str]:
    """A ROOT file, or a text file listing one ROOT file per line."""
    path = expand(input_file)
    if path.endswith(".txt"):
        with open(path, encoding="utf-8") as f:
            return [expand(line.strip()) for line in f if line.strip() and not line.startswith("#")]
    return [path]


def build_chain(tree_name: str, input_file: str) -> Any:
    import ROOT

    files = input_files(input_file)
    paths = ao2d_tree_paths(files, tree_name)
    if not paths:
        raise RuntimeError(f"Tree '{tree_name}' not found in {', '.join(files)}")
    chain = ROOT.TChain(tree_name)
    for path in paths:
        chain.Add(path)
    return chain


def build_rdf_from_ao2d(tree_name: str, input_file: str) -> tuple[Any, Any]:
    """RDataFrame over every ``tree_name`` in the input; the chain is returned to keep it alive."""
    import ROOT

    chain = build_chain(tree_name, input_file)
    return ROOT.RDataFrame(chain), chain


def read_frames(tree_name: str, input_file: str, columns: list[str]) -> dict[str, dict[str, np.ndarray]]:
    """Columns of ``tree_name`` read one time frame at a time, keyed by ``file:DF_xxx``.

    Index columns of AO2D tables are local to their time frame, so the frames
    are kept apart for the caller to re-index.
    """
    import ROOT

    files = input_files(input_file)
    frames = ao2d_frames(files, tree_name)
    if not frames:
        raise RuntimeError(f"Tree '{tree_name}' not found in {', '.join(files)}")
    out: dict[str, dict[str, np.ndarray]] = {}
    for file_name, tree_path in frames:
        rdf = ROOT.RDataFrame(tree_path, file_name)
        available = {str(name) for name in rdf.GetColumnNames()}
        missing = [name for name in columns if name not in available]
        if missing:
            raise RuntimeError(f"Tree '{tree_name}' is missing column(s): {', '.join(missing)}")
        data = rdf.AsNumpy(columns=columns)
        out[f"{file_name}:{tree_path.rpartition('/')[0]}"] = {name: np.asarray(data[name]) for name in columns}
    return out


def read_columns(tree_name: str, input_file: str, columns: list[str]) -> dict[str, np.ndarray]:
    frames = list(read_frames(tree_name, input_file, columns).values())
    return {name: np.concatenate([frame[name] for frame in frames]) for name in columns}


def snapshot_columns(
    columns: dict[str, np.ndarray],
    tree_name: str,
    output_file: str,
    defines: dict[str, str] | None = None,
    drop: list[str] | None = None,
    update: bool = False,
) -> None:
    import ROOT

    # FromNumpy needs contiguous arrays that outlive the event loop.
    keep = {name: np.ascontiguousarray(values) for name, values in columns.items()}
    df = ROOT.RDF.FromNumpy(keep)
    for name, expr in (defines or {}).items():
        df = df.Define(name, expr)
    out_columns = [name for name in list(keep) + list(defines or {}) if name not in set(drop or [])]
    opts = ROOT.RDF.RSnapshotOptions()
    opts.fMode = "UPDATE" if update else "RECREATE"
    out_name = expand(output_file)
    ensure_parent(out_name)
    df.Snapshot(tree_name, out_name, out_columns, opts)


def write_hist(obj: Any, name: str | None = None) -> None:
    hist = obj.GetValue() if hasattr(obj, "GetValue") else obj
    if name:
        hist.Write(name)
    else:
        hist.Write()
