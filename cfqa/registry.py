from dataclasses import dataclass
from typing import Any

import numpy as np


@dataclass(frozen=True)
class Axis:
    nbins: int
    low: float
    high: float
    title: str = ""


@dataclass(frozen=True)
class HistSpec:
    path: str
    title: str
    axes: tuple[Axis, ...]

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def directory(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    @property
    def dimension(self) -> int:
        return len(self.axes)

    def full_title(self) -> str:
        axis_titles = [axis.title for axis in self.axes]
        if not any(axis_titles):
            return self.title
        return ";".join([self.title] + axis_titles)


def h1(path: str, title: str, nbins: int, low: float, high: float, x_title: str = "") -> HistSpec:
    return HistSpec(path, title, (Axis(nbins, low, high, x_title),))


def h2(path: str, title: str, x: tuple[int, float, float], y: tuple[int, float, float], x_title: str = "", y_title: str = "") -> HistSpec:
    return HistSpec(path, title, (Axis(*x, x_title), Axis(*y, y_title)))


def make_root_hist(spec: HistSpec, name: str) -> Any:
    """Detached ROOT TH1F/TH2F booked from ``spec``."""
    import ROOT

    x = spec.axes[0]
    if spec.dimension == 1:
        hist = ROOT.TH1F(name, spec.full_title(), x.nbins, x.low, x.high)
    else:
        y = spec.axes[1]
        hist = ROOT.TH2F(name, spec.full_title(), x.nbins, x.low, x.high, y.nbins, y.low, y.high)
    hist.SetDirectory(0)
    return hist


class HistogramRegistry:
    """Path-keyed collection of ROOT TH1F/TH2F histograms."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.specs: dict[str, HistSpec] = {}
        self._hists: dict[str, Any] = {}

    def add(self, spec: HistSpec) -> Any:
        if spec.path in self.specs:
            raise ValueError(f"Histogram '{spec.path}' already registered in {self.name}.")
        if spec.dimension not in (1, 2):
            raise ValueError(f"Unsupported histogram dimension {spec.dimension} for '{spec.path}'.")
        # Unique in-memory name; the registry path is used when writing.
        hist = make_root_hist(spec, f"{self.name}_{spec.path.replace('/', '_')}")
        self.specs[spec.path] = spec
        self._hists[spec.path] = hist
        return hist

    def add_all(self, specs: list[HistSpec]) -> None:
        for spec in specs:
            self.add(spec)

    def get(self, path: str) -> Any:
        if path not in self._hists:
            raise KeyError(f"Histogram '{path}' is not registered in {self.name}.")
        return self._hists[path]

    def fill(self, path: str, x: Any, y: Any = None) -> None:
        hist = self.get(path)
        xs = np.ascontiguousarray(np.atleast_1d(x), dtype=np.float64)
        if xs.size == 0:
            return
        weights = np.ones(xs.size, dtype=np.float64)
        if y is None:
            hist.FillN(int(xs.size), xs, weights)
            return
        ys = np.ascontiguousarray(np.broadcast_to(np.atleast_1d(y), xs.shape), dtype=np.float64)
        hist.FillN(int(xs.size), xs, ys, weights)

    def write(self, out_dir: Any) -> None:
        """Write every histogram below ``out_dir/<registry name>/<path>``."""
        top = _subdirectory(out_dir, self.name)
        for path, hist in self._hists.items():
            target = top
            for part in filter(None, self.specs[path].directory.split("/")):
                target = _subdirectory(target, part)
            target.cd()
            hist.Write(self.specs[path].name)


def _subdirectory(parent: Any, name: str) -> Any:
    return parent.GetDirectory(name) or parent.mkdir(name)
