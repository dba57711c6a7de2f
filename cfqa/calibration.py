"""Bethe-Bloch calibration objects from a local conditions-database snapshot.

A snapshot directory mirrors the database path layout::

    <root>/<path>/<validFrom>_<validUntil>.root   (timestamps in ms)
    <root>/<path>/snapshot.root                   (no validity information)

Each file stores the calibration histogram as ``ccdb_object``.
"""

import logging
import os
from pathlib import Path
import re
from typing import Any, Protocol

from .pid import bb_params_from_hist, has_complete_params
from .root_io import expand


LOGGER = logging.getLogger("cfqa.calibration")

SNAPSHOT_NAME = "snapshot.root"
OBJECT_NAME = "ccdb_object"
_VALIDITY_RE = re.compile(r"^(\d+)_(\d+)\.root$")


class CalibrationProvider(Protocol):
    def retrieve(self, path: str, timestamp: int) -> Any | None: ...


def resolve_snapshot(root_dir: str, path: str, timestamp: int) -> str | None:
    """Pick the file valid for ``timestamp`` under ``root_dir/path``."""
    obj_dir = Path(expand(root_dir)) / path.strip("/")
    if not obj_dir.is_dir():
        return None
    candidates: list[tuple[int, int, str]] = []
    for entry in os.listdir(obj_dir):
        match = _VALIDITY_RE.match(entry)
        if match:
            candidates.append((int(match.group(1)), int(match.group(2)), entry))
    # Latest upload wins when intervals overlap.
    for valid_from, valid_until, name in sorted(candidates, reverse=True):
        if valid_from <= timestamp < valid_until:
            return str(obj_dir / name)
    snapshot = obj_dir / SNAPSHOT_NAME
    if snapshot.is_file():
        return str(snapshot)
    return None


class LocalCalibrationStore:
    def __init__(self, root_dir: str) -> None:
        self.root_dir = root_dir

    def retrieve(self, path: str, timestamp: int) -> Any | None:
        file_name = resolve_snapshot(self.root_dir, path, timestamp)
        if file_name is None:
            return None
        import ROOT

        in_file = ROOT.TFile(file_name)
        if not in_file or in_file.IsZombie():
            LOGGER.warning("Cannot open calibration file %s", file_name)
            return None
        obj = in_file.Get(OBJECT_NAME)
        if not obj:
            for key in in_file.GetListOfKeys():
                candidate = key.ReadObj()
                if candidate and candidate.InheritsFrom("TH1"):
                    obj = candidate
                    break
        if not obj:
            in_file.Close()
            return None
        obj = obj.Clone(f"{OBJECT_NAME}_{abs(hash((path, timestamp)))}")
        obj.SetDirectory(0)
        in_file.Close()
        return obj


class BetheBlochCache:
    """Per-run cache of the Bethe-Bloch parameter sets used for manual PID.

    ``update`` refetches every requested set only when the run number changes.
    A set that cannot be found is stored as an empty list so that the nominal
    nSigma is used downstream.
    """

    def __init__(self, provider: CalibrationProvider, paths: dict[str, str], requested: list[str]) -> None:
        self.provider = provider
        self.paths = dict(paths)
        self.requested = list(requested)
        self.last_run: int | None = None
        self.params: dict[str, list[float]] = {name: [] for name in self.requested}

    def update(self, run_number: int, timestamp: int) -> bool:
        if not self.requested or run_number == self.last_run:
            return False
        for name in self.requested:
            self.params[name] = self._fetch(self.paths[name], run_number, timestamp)
        self.last_run = run_number
        return True

    def _fetch(self, path: str, run_number: int, timestamp: int) -> list[float]:
        hist = self.provider.retrieve(path, timestamp)
        if not hist:
            LOGGER.info(
                "File from CCDB in path %s was not found for run %d. Will use default PID task values!", path, run_number
            )
            return []
        LOGGER.info("File from CCDB in path %s was found for run %d!", path, run_number)
        return bb_params_from_hist(hist)

    def get(self, name: str) -> list[float]:
        params = self.params.get(name, [])
        return params if has_complete_params(params) else []
