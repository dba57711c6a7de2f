import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - runtime compatibility path
    import tomli as tomllib


DEFAULTS_DIR = Path(__file__).parent
DEFAULTS_BY_TASK = {
    "cffilter_qa": DEFAULTS_DIR / "defaults_cffilter_qa.toml",
    "ft0_qa": DEFAULTS_DIR / "defaults_ft0_qa.toml",
}
DEFAULT_TASK = "cffilter_qa"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        cfg = tomllib.load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"Invalid defaults TOML at {path}: top-level table is missing.")
    return cfg


_DEFAULT_CONFIG_CACHE: dict[str, dict[str, Any]] = {}


def normalize_task_name(task: str | None) -> str:
    key = str(task or DEFAULT_TASK).strip().lower()
    if key not in DEFAULTS_BY_TASK:
        raise ValueError(f"Unsupported task '{key}'. Supported tasks: {', '.join(sorted(DEFAULTS_BY_TASK))}.")
    return key


def _task_hint_from_cfg(cfg: dict[str, Any] | None) -> str | None:
    if not isinstance(cfg, dict):
        return None
    run_cfg = cfg.get("run")
    if not isinstance(run_cfg, dict) or run_cfg.get("task") is None:
        return None
    return str(run_cfg["task"]).strip().lower()


def default_config_template(task: str | None = None) -> dict[str, Any]:
    key = normalize_task_name(task)
    if key not in _DEFAULT_CONFIG_CACHE:
        _DEFAULT_CONFIG_CACHE[key] = _load_toml(DEFAULTS_BY_TASK[key])
    return copy.deepcopy(_DEFAULT_CONFIG_CACHE[key])


def _required_table(table: dict[str, Any], key: str, context: str = "defaults") -> dict[str, Any]:
    value = table.get(key)
    if not isinstance(value, dict):
        raise ValueError(f"Missing or invalid [{key}] table in {context} config")
    return value


def _required_value(table: dict[str, Any], key: str, context: str) -> Any:
    if key not in table:
        raise ValueError(f"Missing required key '{context}.{key}'")
    return table[key]


def _deep_merge_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge_dict(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def merge_config(cfg: dict[str, Any] | None, task: str | None = None) -> dict[str, Any]:
    merged = default_config_template(task or _task_hint_from_cfg(cfg))
    if not isinstance(cfg, dict):
        return merged
    return _deep_merge_dict(merged, cfg)


class LabeledArray:
    """Two-dimensional table of floats addressed by row/column label or index."""

    def __init__(self, values: list[list[float]], rows: list[str], columns: list[str]) -> None:
        self.rows = [str(r) for r in rows]
        self.columns = [str(c) for c in columns]
        self.values = [[float(v) for v in row] for row in values]
        if len(self.values) != len(self.rows):
            raise ValueError(f"LabeledArray has {len(self.values)} rows of values but {len(self.rows)} row labels.")
        for i, row in enumerate(self.values):
            if len(row) != len(self.columns):
                raise ValueError(
                    f"LabeledArray row '{self.rows[i]}' has {len(row)} values but {len(self.columns)} column labels."
                )

    @classmethod
    def from_table(cls, table: dict[str, Any], context: str) -> "LabeledArray":
        return cls(
            list(_required_value(table, "values", context)),
            list(_required_value(table, "rows", context)),
            list(_required_value(table, "columns", context)),
        )

    def _index(self, key: int | str, labels: list[str], axis: str) -> int:
        if isinstance(key, str):
            if key not in labels:
                raise KeyError(f"Unknown {axis} label '{key}'. Available: {', '.join(labels)}.")
            return labels.index(key)
        idx = int(key)
        if idx < 0 or idx >= len(labels):
            raise IndexError(f"{axis} index {idx} out of range [0, {len(labels)}).")
        return idx

    def get(self, row: int | str, column: int | str) -> float:
        return self.values[self._index(row, self.rows, "row")][self._index(column, self.columns, "column")]

    def __repr__(self) -> str:
        return f"LabeledArray(rows={self.rows}, columns={self.columns}, values={self.values})"


@dataclass(frozen=True)
class EventSelection:
    select_zvtx: bool
    zvtx_max: float
    offline_check: bool


@dataclass(frozen=True)
class TrackSelection:
    eta_max: float
    tpc_ncls_min: LabeledArray
    tpc_crossed_over_findable_min: float
    tpc_crossed_rows_min: float
    tpc_shared_max: float
    its_ncls_min: float
    its_ncls_ib_min: float
    dcaxy_max: float
    dcaz_max: float
    reject_not_propagated: bool
    require_chi2_tpc: bool
    max_chi2_tpc: float
    require_chi2_its: bool
    max_chi2_its: float
    require_tpc_refit: bool
    require_its_refit: bool


@dataclass(frozen=True)
class PIDSelection:
    cuts: LabeledArray
    cuts_anti: LabeledArray
    pt_cuts: LabeledArray
    rejection: LabeledArray
    tpc_tof_avg: LabeledArray
    deuteron_threshold_pv_mom: bool
    reject_not_deuteron: bool


@dataclass(frozen=True)
class ManualPID:
    proton: bool
    deuteron: bool
    pion: bool
    electron: bool
    daughter_pion: bool
    daughter_proton: bool
    paths: dict[str, str]

    @property
    def enabled(self) -> bool:
        """Parameters are refreshed only when proton or deuteron recalibration is on."""
        return self.proton or self.deuteron

    def requested_sets(self) -> list[str]:
        """Names of the Bethe-Bloch parameter sets fetched on a run change.

        The electron sets follow the pion switch. The electron switch alone
        never triggers a fetch.
        """
        if not self.enabled:
            return []
        out: list[str] = []
        if self.proton or self.daughter_proton:
            out += ["proton", "antiproton"]
        if self.deuteron:
            out += ["deuteron", "antideuteron"]
        if self.pion or self.daughter_pion:
            out += ["pion", "antipion"]
        if self.pion:
            out += ["electron", "antielectron"]
        return out


@dataclass(frozen=True)
class V0Selection:
    pt_min: float
    dca_daughters_max: float
    cpa_min: float
    transverse_radius_min: float
    transverse_radius_max: float
    decay_vertex_max: float
    inv_mass_low: float
    inv_mass_up: float
    reject_kaons: bool
    kaon_mass_low: float
    kaon_mass_up: float


@dataclass(frozen=True)
class V0DaughterSelection:
    eta_max: float
    tpc_ncls_min: float
    dca_min: float
    pid_cuts: LabeledArray


@dataclass(frozen=True)
class FemtoOutput:
    cutbit_part: int
    cutbit_antipart: int
    pidbit_proton: int
    pidbit_deuteron: int
    cutbit_v0: int
    cutbit_v0_child_pos: int
    cutbit_v0_child_neg: int
    pidbit_v0_child_proton: int
    pidbit_v0_child_pion: int


@dataclass(frozen=True)
class FT0Settings:
    time_window_ns: float
    vertex_trigger_bit: int


@dataclass(frozen=True)
class RuntimeConfig:
    task: str
    is_run3: bool
    process_deuterons: bool
    process_v0s: bool
    tables: dict[str, str]
    paths: dict[str, str]
    event: EventSelection | None = None
    track: TrackSelection | None = None
    pid: PIDSelection | None = None
    manual_pid: ManualPID | None = None
    v0: V0Selection | None = None
    v0_daughter: V0DaughterSelection | None = None
    femto: FemtoOutput | None = None
    ft0: FT0Settings | None = None

    def table_name(self, key: str) -> str:
        if key not in self.tables:
            raise ValueError(f"Missing required key 'tables.{key}'")
        return self.tables[key]


def _floats(table: dict[str, Any], keys: list[str], context: str) -> dict[str, float]:
    return {key: float(_required_value(table, key, context)) for key in keys}


def _bools(table: dict[str, Any], keys: list[str], context: str) -> dict[str, bool]:
    return {key: bool(_required_value(table, key, context)) for key in keys}


def _build_event(cfg: dict[str, Any]) -> EventSelection:
    ev = _required_table(cfg, "event", "config")
    return EventSelection(
        select_zvtx=bool(_required_value(ev, "select_zvtx", "event")),
        zvtx_max=float(_required_value(ev, "zvtx_max", "event")),
        offline_check=bool(_required_value(ev, "offline_check", "event")),
    )


def _build_track(cfg: dict[str, Any]) -> TrackSelection:
    trk = _required_table(cfg, "track", "config")
    tpc_ncls = LabeledArray.from_table(_required_table(trk, "tpc_ncls_min", "track"), "track.tpc_ncls_min")
    return TrackSelection(
        tpc_ncls_min=tpc_ncls,
        **_floats(
            trk,
            [
                "eta_max",
                "tpc_crossed_over_findable_min",
                "tpc_crossed_rows_min",
                "tpc_shared_max",
                "its_ncls_min",
                "its_ncls_ib_min",
                "dcaxy_max",
                "dcaz_max",
                "max_chi2_tpc",
                "max_chi2_its",
            ],
            "track",
        ),
        **_bools(
            trk,
            ["reject_not_propagated", "require_chi2_tpc", "require_chi2_its", "require_tpc_refit", "require_its_refit"],
            "track",
        ),
    )


def _build_pid(cfg: dict[str, Any]) -> PIDSelection:
    pid = _required_table(cfg, "pid", "config")
    tables = {
        key: LabeledArray.from_table(_required_table(pid, key, "pid"), f"pid.{key}")
        for key in ("cuts", "cuts_anti", "pt_cuts", "rejection", "tpc_tof_avg")
    }
    return PIDSelection(
        deuteron_threshold_pv_mom=bool(_required_value(pid, "deuteron_threshold_pv_mom", "pid")),
        reject_not_deuteron=bool(_required_value(pid, "reject_not_deuteron", "pid")),
        **tables,
    )


def _build_manual_pid(cfg: dict[str, Any]) -> ManualPID:
    mp = _required_table(cfg, "manual_pid", "config")
    paths = {str(k): str(v) for k, v in _required_table(mp, "paths", "manual_pid").items()}
    switches = _bools(mp, ["proton", "deuteron", "pion", "electron", "daughter_pion", "daughter_proton"], "manual_pid")
    manual = ManualPID(paths=paths, **switches)
    missing = [name for name in manual.requested_sets() if name not in paths]
    if missing:
        raise ValueError(f"Missing required key(s) in [manual_pid.paths]: {', '.join(missing)}")
    return manual


def _build_v0(cfg: dict[str, Any]) -> V0Selection:
    v0 = _required_table(cfg, "v0", "config")
    out = V0Selection(
        reject_kaons=bool(_required_value(v0, "reject_kaons", "v0")),
        **_floats(
            v0,
            [
                "pt_min",
                "dca_daughters_max",
                "cpa_min",
                "transverse_radius_min",
                "transverse_radius_max",
                "decay_vertex_max",
                "inv_mass_low",
                "inv_mass_up",
                "kaon_mass_low",
                "kaon_mass_up",
            ],
            "v0",
        ),
    )
    if out.inv_mass_low >= out.inv_mass_up:
        raise ValueError("v0.inv_mass_low must be smaller than v0.inv_mass_up.")
    return out


def _build_v0_daughter(cfg: dict[str, Any]) -> V0DaughterSelection:
    dau = _required_table(cfg, "v0_daughter", "config")
    return V0DaughterSelection(
        pid_cuts=LabeledArray.from_table(_required_table(dau, "pid_cuts", "v0_daughter"), "v0_daughter.pid_cuts"),
        **_floats(dau, ["eta_max", "tpc_ncls_min", "dca_min"], "v0_daughter"),
    )


def _build_femto(cfg: dict[str, Any]) -> FemtoOutput:
    femto = _required_table(cfg, "femto", "config")
    keys = [
        "cutbit_part",
        "cutbit_antipart",
        "pidbit_proton",
        "pidbit_deuteron",
        "cutbit_v0",
        "cutbit_v0_child_pos",
        "cutbit_v0_child_neg",
        "pidbit_v0_child_proton",
        "pidbit_v0_child_pion",
    ]
    values = {key: int(_required_value(femto, key, "femto")) for key in keys}
    negative = [key for key, value in values.items() if value < 0]
    if negative:
        raise ValueError(f"Cut and PID bits must be non-negative: {', '.join(negative)}")
    return FemtoOutput(**values)


def _build_ft0(cfg: dict[str, Any]) -> FT0Settings:
    ft0 = _required_table(cfg, "ft0", "config")
    bit = int(_required_value(ft0, "vertex_trigger_bit", "ft0"))
    if not 0 <= bit < 8:
        raise ValueError(f"ft0.vertex_trigger_bit must be in [0, 8), got {bit}.")
    return FT0Settings(time_window_ns=float(_required_value(ft0, "time_window_ns", "ft0")), vertex_trigger_bit=bit)


def current_runtime_config(cfg: dict[str, Any] | None = None) -> RuntimeConfig:
    merged = merge_config(cfg)
    run_cfg = _required_table(merged, "run", "config")
    task = normalize_task_name(run_cfg.get("task"))
    tables = {str(k): str(v) for k, v in _required_table(merged, "tables", "config").items()}
    paths = {str(k): str(v) for k, v in _required_table(merged, "paths", "config").items()}

    if task == "ft0_qa":
        return RuntimeConfig(
            task=task,
            is_run3=True,
            process_deuterons=False,
            process_v0s=False,
            tables=tables,
            paths=paths,
            ft0=_build_ft0(merged),
        )

    return RuntimeConfig(
        task=task,
        is_run3=bool(run_cfg.get("is_run3", True)),
        process_deuterons=bool(run_cfg.get("process_deuterons", False)),
        process_v0s=bool(run_cfg.get("process_v0s", False)),
        tables=tables,
        paths=paths,
        event=_build_event(merged),
        track=_build_track(merged),
        pid=_build_pid(merged),
        manual_pid=_build_manual_pid(merged),
        v0=_build_v0(merged),
        v0_daughter=_build_v0_daughter(merged),
        femto=_build_femto(merged),
    )
