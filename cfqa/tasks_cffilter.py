import logging
from typing import Any, Mapping

import numpy as np

from .calibration import BetheBlochCache, LocalCalibrationStore
from .femto import (
    COLLISION_TREE,
    PARTICLE_TREE,
    PART_TYPE_TRACK,
    PART_TYPE_V0,
    PART_TYPE_V0_CHILD,
    FemtoTables,
)
from .histograms import cffilter_qa_specs
from .pid import combined_nsigma, recalibrated_nsigma
from .registry import HistogramRegistry
from .root_io import ensure_parent, expand, read_frames, snapshot_columns
from .selections import (
    DAUGHTER_PION,
    DAUGHTER_PROTON,
    DEUTERON,
    PROTON,
    daughter_columns,
    is_selected_event,
    is_selected_track,
    is_selected_track_pid,
    is_selected_v0,
    is_selected_v0_daughter,
)
from .settings import RuntimeConfig
from .tasks_common import concat_tables, iter_run_blocks, rows_of_collisions, select_rows, table_length


LOGGER = logging.getLogger("cfqa.tasks")

TASK_DIRECTORY = "cf-filter-qa"

COLLISION_COLUMNS = ["fPosZ", "fSel8", "fMultNTracksPV", "fMultFV0M", "fRunNumber", "fTimestamp"]
TRACK_COLUMNS = [
    "fIndexCollisions",
    "fPt",
    "fEta",
    "fPhi",
    "fP",
    "fSign",
    "fTPCInnerParam",
    "fTPCSignal",
    "fTPCNClsFound",
    "fTPCNClsCrossedRows",
    "fTPCCrossedRowsOverFindableCls",
    "fTPCNClsShared",
    "fITSNCls",
    "fITSNClsInnerBarrel",
    "fDcaXY",
    "fDcaZ",
    "fTPCChi2NCl",
    "fITSChi2NCl",
    "fHasTPC",
    "fHasITS",
    "fTPCNSigmaEl",
    "fTPCNSigmaPi",
    "fTPCNSigmaPr",
    "fTPCNSigmaDe",
    "fTOFNSigmaPr",
    "fTOFNSigmaDe",
]
V0_DAUGHTER_FIELDS = ["Pt", "Eta", "Phi", "Sign", "TPCInnerParam", "TPCSignal", "TPCNClsFound", "DcaXY", "TPCNSigmaPr", "TPCNSigmaPi"]
V0_COLUMNS = [
    "fIndexCollisions",
    "fPt",
    "fEta",
    "fPhi",
    "fDCAV0Daughters",
    "fV0CosPA",
    "fV0Radius",
    "fX",
    "fY",
    "fZ",
    "fMLambda",
    "fMAntiLambda",
    "fMK0Short",
] + [f"f{leg}{name}" for leg in ("Pos", "Neg") for name in V0_DAUGHTER_FIELDS]

Columns = Mapping[str, Any]


def book_histograms(registry: HistogramRegistry, runtime_config: RuntimeConfig) -> None:
    registry.add_all(cffilter_qa_specs(runtime_config.process_deuterons, runtime_config.process_v0s))


def _tpc_tof(nsigma_tpc: Any, nsigma_tof: Any, avg_row: str, runtime_config: RuntimeConfig) -> np.ndarray:
    avg = runtime_config.pid.tpc_tof_avg
    return combined_nsigma(nsigma_tpc, nsigma_tof, avg.get(avg_row, "TPC Avg"), avg.get(avg_row, "TOF Avg"))


def track_nsigma(
    tracks: Columns, runtime_config: RuntimeConfig, bb_cache: BetheBlochCache
) -> tuple[tuple[np.ndarray, np.ndarray], tuple[np.ndarray, np.ndarray]]:
    """(proton, deuteron) TPC nSigma for the particle and the antiparticle hypothesis."""
    manual = runtime_config.manual_pid
    inner = tracks["fTPCInnerParam"]
    signal = tracks["fTPCSignal"]
    proton = np.asarray(tracks["fTPCNSigmaPr"], dtype=np.float64)
    deuteron = np.asarray(tracks["fTPCNSigmaDe"], dtype=np.float64)
    nsigma_pos = [proton, deuteron]
    nsigma_neg = [proton, deuteron]
    if manual.proton:
        nsigma_pos[0] = recalibrated_nsigma(proton, inner, signal, "proton", bb_cache.get("proton"))
        nsigma_neg[0] = recalibrated_nsigma(proton, inner, signal, "proton", bb_cache.get("antiproton"))
    if manual.deuteron:
        nsigma_pos[1] = recalibrated_nsigma(deuteron, inner, signal, "deuteron", bb_cache.get("deuteron"))
        nsigma_neg[1] = recalibrated_nsigma(deuteron, inner, signal, "deuteron", bb_cache.get("antideuteron"))
    return (nsigma_pos[0], nsigma_pos[1]), (nsigma_neg[0], nsigma_neg[1])


def rejection_nsigma(
    tracks: Columns, charge: int, runtime_config: RuntimeConfig, bb_cache: BetheBlochCache
) -> tuple[np.ndarray, np.ndarray]:
    """Pion and electron TPC nSigma used to reject misidentified candidates."""
    manual = runtime_config.manual_pid
    inner = tracks["fTPCInnerParam"]
    signal = tracks["fTPCSignal"]
    pion = np.asarray(tracks["fTPCNSigmaPi"], dtype=np.float64)
    electron = np.asarray(tracks["fTPCNSigmaEl"], dtype=np.float64)
    if manual.pion:
        pion = recalibrated_nsigma(pion, inner, signal, "pion", bb_cache.get("pion" if charge > 0 else "antipion"))
    if manual.electron:
        # The electron is the negative particle.
        params = bb_cache.get("electron" if charge < 0 else "antielectron")
        electron = recalibrated_nsigma(electron, inner, signal, "electron", params)
    return pion, electron


def daughter_nsigma(
    daughters: Columns, positive: bool, runtime_config: RuntimeConfig, bb_cache: BetheBlochCache
) -> tuple[np.ndarray, np.ndarray]:
    """(proton, pion) TPC nSigma of one V0 leg."""
    manual = runtime_config.manual_pid
    inner = daughters["fTPCInnerParam"]
    signal = daughters["fTPCSignal"]
    proton = np.asarray(daughters["fTPCNSigmaPr"], dtype=np.float64)
    pion = np.asarray(daughters["fTPCNSigmaPi"], dtype=np.float64)
    if manual.daughter_proton:
        proton = recalibrated_nsigma(proton, inner, signal, "proton", bb_cache.get("proton" if positive else "antiproton"))
    if manual.daughter_pion:
        pion = recalibrated_nsigma(pion, inner, signal, "pion", bb_cache.get("pion" if positive else "antipion"))
    return proton, pion


def _fill_selected_tracks(
    registry: Any,
    particle: str,
    tracks: Columns,
    mask: np.ndarray,
    nsigma_tpc: np.ndarray,
    nsigma_tof: np.ndarray,
    runtime_config: RuntimeConfig,
) -> None:
    if not np.any(mask):
        return
    trk = select_rows(tracks, mask)
    tpc = nsigma_tpc[mask]
    tof = nsigma_tof[mask]
    inner = trk["fTPCInnerParam"]
    base = f"TrackCuts/{particle}"

    registry.fill(f"TrackCuts/TPCSignal/fTPCSignal{particle}", inner, trk["fTPCSignal"])
    if particle == "Proton":
        registry.fill(f"{base}/fPProton", trk["fP"])
        registry.fill(f"{base}/fPTPCProton", inner)
    registry.fill(f"{base}/fPt{particle}", trk["fPt"])
    registry.fill(f"{base}/fEta{particle}", trk["fEta"])
    registry.fill(f"{base}/fPhi{particle}", trk["fPhi"])
    registry.fill(f"{base}/fNsigmaTPCvsP{particle}", inner, tpc)
    registry.fill(f"{base}/fNsigmaTOFvsP{particle}", inner, tof)
    registry.fill(f"{base}/fNsigmaTPCTOFvsP{particle}", inner, _tpc_tof(tpc, tof, particle, runtime_config))
    if particle in ("Deuteron", "AntiDeuteron"):
        registry.fill(f"{base}/fNsigmaTPCvsP{particle}P", trk["fP"], tpc)

    registry.fill(f"{base}/fDCAxy{particle}", trk["fDcaXY"])
    registry.fill(f"{base}/fDCAz{particle}", trk["fDcaZ"])
    registry.fill(f"{base}/fTPCsCls{particle}", trk["fTPCNClsShared"])
    registry.fill(f"{base}/fTPCcRows{particle}", trk["fTPCNClsCrossedRows"])
    registry.fill(f"{base}/fTrkTPCfCls{particle}", trk["fTPCCrossedRowsOverFindableCls"])
    registry.fill(f"{base}/fTPCncls{particle}", trk["fTPCNClsFound"])


def _append_track_rows(
    tables: FemtoTables,
    tracks: Columns,
    femto_collision: np.ndarray,
    particles: np.ndarray,
    antiparticles: np.ndarray,
    pid_bit: int,
    runtime_config: RuntimeConfig,
) -> None:
    """Femto rows for the accepted tracks, kept in track order."""
    accepted = particles | antiparticles
    if not np.any(accepted):
        return
    femto = runtime_config.femto
    cut = np.where(particles[accepted], femto.cutbit_part, femto.cutbit_antipart)
    tables.particles.append(
        femto_collision[accepted],
        np.asarray(tracks["fPt"])[accepted],
        np.asarray(tracks["fEta"])[accepted],
        np.asarray(tracks["fPhi"])[accepted],
        PART_TYPE_TRACK,
        cut,
        pid_bit,
        np.asarray(tracks["fDcaXY"])[accepted],
    )


def _process_protons(
    tracks: Columns,
    femto_collision: np.ndarray,
    nsigma_pos: tuple[np.ndarray, np.ndarray],
    nsigma_neg: tuple[np.ndarray, np.ndarray],
    runtime_config: RuntimeConfig,
    registry: Any,
    tables: FemtoTables,
) -> tuple[int, int]:
    inner = np.asarray(tracks["fTPCInnerParam"])
    p = np.asarray(tracks["fP"])
    signal = np.asarray(tracks["fTPCSignal"])
    sign = np.asarray(tracks["fSign"])
    tof = np.asarray(tracks["fTOFNSigmaPr"], dtype=np.float64)
    positive = sign > 0
    negative = sign < 0

    quality = is_selected_track(tracks, PROTON, runtime_config.track, runtime_config.pid)

    registry.fill("TrackCuts/TPCSignal/fTPCSignal", inner[positive], signal[positive])
    registry.fill("TrackCuts/TPCSignal/fTPCSignalP", p[positive], signal[positive])
    good = positive & quality
    registry.fill("TrackCuts/TPCSignal/fTPCSignalALLCUTS", inner[good], signal[good])
    registry.fill("TrackCuts/TPCSignal/fTPCSignalALLCUTSP", p[good], signal[good])
    registry.fill("TrackCuts/TracksBefore/fMomCorrelationAfterCuts", p[good], inner[good])
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTPCvsPProtonBefore", inner[positive], nsigma_pos[0][positive])
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTOFvsPProtonBefore", inner[positive], tof[positive])
    registry.fill(
        "TrackCuts/NSigmaBefore/fNsigmaTPCTOFvsPProtonBefore",
        inner[positive],
        _tpc_tof(nsigma_pos[0][positive], tof[positive], "Proton", runtime_config),
    )

    registry.fill("TrackCuts/TPCSignal/fTPCSignalAnti", inner[negative], signal[negative])
    registry.fill("TrackCuts/TPCSignal/fTPCSignalAntiP", p[negative], signal[negative])
    good = negative & quality
    registry.fill("TrackCuts/TPCSignal/fTPCSignalAntiALLCUTS", inner[good], signal[good])
    registry.fill("TrackCuts/TPCSignal/fTPCSignalAntiALLCUTSP", p[good], signal[good])
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTPCvsPAntiProtonBefore", inner[negative], nsigma_neg[0][negative])
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTOFvsPAntiProtonBefore", inner[negative], tof[negative])
    # The before-selection QA of antiprotons is centred with the proton averages.
    registry.fill(
        "TrackCuts/NSigmaBefore/fNsigmaTPCTOFvsPAntiProtonBefore",
        inner[negative],
        _tpc_tof(nsigma_neg[0][negative], tof[negative], "Proton", runtime_config),
    )

    pid = runtime_config.pid
    protons = quality & positive & is_selected_track_pid(tracks, PROTON, False, nsigma_pos, 1, pid)
    antiprotons = quality & negative & is_selected_track_pid(tracks, PROTON, False, nsigma_neg, -1, pid)
    _append_track_rows(tables, tracks, femto_collision, protons, antiprotons, runtime_config.femto.pidbit_proton, runtime_config)
    _fill_selected_tracks(registry, "Proton", tracks, protons, nsigma_pos[0], tof, runtime_config)
    _fill_selected_tracks(registry, "AntiProton", tracks, antiprotons, nsigma_neg[0], tof, runtime_config)
    return int(np.count_nonzero(protons)), int(np.count_nonzero(antiprotons))


def _process_deuterons(
    tracks: Columns,
    femto_collision: np.ndarray,
    nsigma_pos: tuple[np.ndarray, np.ndarray],
    nsigma_neg: tuple[np.ndarray, np.ndarray],
    runtime_config: RuntimeConfig,
    registry: Any,
    tables: FemtoTables,
    bb_cache: BetheBlochCache,
) -> tuple[int, int]:
    inner = np.asarray(tracks["fTPCInnerParam"])
    p = np.asarray(tracks["fP"])
    sign = np.asarray(tracks["fSign"])
    tof = np.asarray(tracks["fTOFNSigmaDe"], dtype=np.float64)
    positive = sign > 0
    negative = sign < 0

    for particle, mask, nsigma in (("Deuteron", positive, nsigma_pos[1]), ("AntiDeuteron", negative, nsigma_neg[1])):
        base = "TrackCuts/NSigmaBefore"
        registry.fill(f"{base}/fNsigmaTPCvsP{particle}Before", inner[mask], nsigma[mask])
        registry.fill(f"{base}/fNsigmaTOFvsP{particle}Before", inner[mask], tof[mask])
        registry.fill(f"{base}/fNsigmaTPCTOFvsP{particle}Before", inner[mask], _tpc_tof(nsigma[mask], tof[mask], particle, runtime_config))
        registry.fill(f"{base}/fNsigmaTPCvsP{particle}BeforeP", p[mask], nsigma[mask])
    registry.fill("TrackCuts/TracksBefore/fMomCorrelation", p[positive], inner[positive])

    pid = runtime_config.pid
    quality = is_selected_track(tracks, DEUTERON, runtime_config.track, pid)
    reject = pid.reject_not_deuteron
    pion_pos, electron_pos = rejection_nsigma(tracks, 1, runtime_config, bb_cache)
    pion_neg, electron_neg = rejection_nsigma(tracks, -1, runtime_config, bb_cache)
    deuterons = quality & positive & is_selected_track_pid(tracks, DEUTERON, reject, nsigma_pos, 1, pid, pion_pos, electron_pos)
    antideuterons = quality & negative & is_selected_track_pid(tracks, DEUTERON, reject, nsigma_neg, -1, pid, pion_neg, electron_neg)
    _append_track_rows(
        tables, tracks, femto_collision, deuterons, antideuterons, runtime_config.femto.pidbit_deuteron, runtime_config
    )
    _fill_selected_tracks(registry, "Deuteron", tracks, deuterons, nsigma_pos[1], tof, runtime_config)
    _fill_selected_tracks(registry, "AntiDeuteron", tracks, antideuterons, nsigma_neg[1], tof, runtime_config)
    return int(np.count_nonzero(deuterons)), int(np.count_nonzero(antideuterons))


def _fill_v0_group(registry: Any, base: str, v0s: Columns, pos: Columns, neg: Columns) -> None:
    registry.fill(f"{base}/fV0DCADaugh", v0s["fDCAV0Daughters"])
    registry.fill(f"{base}/fV0CPA", v0s["fV0CosPA"])
    registry.fill(f"{base}/fV0TranRad", v0s["fV0Radius"])
    registry.fill(f"{base}/f0DecVtxX", v0s["fX"])
    registry.fill(f"{base}/f0DecVtxY", v0s["fY"])
    registry.fill(f"{base}/f0DecVtxZ", v0s["fZ"])
    for leg, daughter in (("PosDaughter", pos), ("NegDaughter", neg)):
        registry.fill(f"{base}/{leg}/Eta", daughter["fEta"])
        registry.fill(f"{base}/{leg}/DCAXY", daughter["fDcaXY"])
        registry.fill(f"{base}/{leg}/fTPCncls", daughter["fTPCNClsFound"])


def _process_v0s(
    v0s: Columns,
    femto_collision: np.ndarray,
    runtime_config: RuntimeConfig,
    registry: Any,
    tables: FemtoTables,
    bb_cache: BetheBlochCache,
) -> tuple[int, int]:
    pos = daughter_columns(v0s, "pos")
    neg = daughter_columns(v0s, "neg")
    pos_proton, pos_pion = daughter_nsigma(pos, True, runtime_config, bb_cache)
    neg_proton, neg_pion = daughter_nsigma(neg, False, runtime_config, bb_cache)
    m_lambda = np.asarray(v0s["fMLambda"])
    m_anti_lambda = np.asarray(v0s["fMAntiLambda"])
    m_kaon = np.asarray(v0s["fMK0Short"])

    before = "TrackCuts/V0Before"
    registry.fill(f"{before}/fInvMassLambdavsAntiLambda", m_lambda, m_anti_lambda)
    registry.fill(f"{before}/fPtLambdaBefore", v0s["fPt"])
    registry.fill(f"{before}/fInvMassLambdaBefore", m_lambda)
    registry.fill(f"{before}/fInvMassAntiLambdaBefore", m_anti_lambda)
    registry.fill(f"{before}/fInvMassV0BeforeKaonvsV0Before", m_lambda, m_kaon)
    _fill_v0_group(registry, before, v0s, pos, neg)
    registry.fill(f"{before}/PosDaughter/fNsigmaTPCvsPProtonV0Daugh", pos["fTPCInnerParam"], pos_proton)
    registry.fill(f"{before}/NegDaughter/fNsigmaTPCvsPPionMinusV0Daugh", neg["fTPCInnerParam"], neg_pion)
    registry.fill(f"{before}/NegDaughter/fNsigmaTPCvsPAntiProtonV0Daugh", neg["fTPCInnerParam"], neg_proton)
    registry.fill(f"{before}/PosDaughter/fNsigmaTPCvsPPionPlusV0Daugh", pos["fTPCInnerParam"], pos_pion)

    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTPCvsPProtonV0DaughBefore", pos["fTPCInnerParam"], pos_proton)
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTPCvsPPionMinusV0DaughBefore", neg["fTPCInnerParam"], neg_pion)
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTPCvsPAntiProtonAntiV0DaughBefore", neg["fTPCInnerParam"], neg_proton)
    registry.fill("TrackCuts/NSigmaBefore/fNsigmaTPCvsPPionPlusAntiV0DaughBefore", pos["fTPCInnerParam"], pos_pion)
    dau_sel = runtime_config.v0_daughter
    legs = {
        "ProtonPlus": (pos, is_selected_v0_daughter(pos, 1, DAUGHTER_PROTON, (pos_proton, pos_pion), dau_sel)),
        "PionPlus": (pos, is_selected_v0_daughter(pos, 1, DAUGHTER_PION, (pos_proton, pos_pion), dau_sel)),
        "ProtonMinus": (neg, is_selected_v0_daughter(neg, -1, DAUGHTER_PROTON, (neg_proton, neg_pion), dau_sel)),
        "PionMinus": (neg, is_selected_v0_daughter(neg, -1, DAUGHTER_PION, (neg_proton, neg_pion), dau_sel)),
    }
    for name, (daughter, mask) in legs.items():
        inner = np.asarray(daughter["fTPCInnerParam"])[mask]
        registry.fill(f"TrackCuts/TPCSignal/fTPCSignal{name}V0Daughter", inner, np.asarray(daughter["fTPCSignal"])[mask])

    v0_sel = runtime_config.v0
    lambdas = is_selected_v0(v0s, False, v0_sel) & legs["ProtonPlus"][1] & legs["PionMinus"][1]
    anti_lambdas = is_selected_v0(v0s, True, v0_sel) & legs["PionPlus"][1] & legs["ProtonMinus"][1]
    # A candidate compatible with both hypotheses is kept as a Lambda.
    anti_lambdas &= ~lambdas

    for name, mask, mass, pos_hist, neg_hist, pos_nsigma, neg_nsigma in (
        ("Lambda", lambdas, m_lambda, "fNsigmaTPCvsPProtonV0Daugh", "fNsigmaTPCvsPPionMinusV0Daugh", pos_proton, neg_pion),
        (
            "AntiLambda",
            anti_lambdas,
            m_anti_lambda,
            "fNsigmaTPCvsPPionPlusAntiV0Daugh",
            "fNsigmaTPCvsPAntiProtonAntiV0Daugh",
            pos_pion,
            neg_proton,
        ),
    ):
        if not np.any(mask):
            continue
        base = f"TrackCuts/{name}"
        sel_v0 = select_rows(v0s, mask)
        sel_pos = select_rows(pos, mask)
        sel_neg = select_rows(neg, mask)
        registry.fill(f"{base}/fPt{name}", sel_v0["fPt"])
        registry.fill(f"{base}/fInvMass{name}", mass[mask])
        registry.fill(f"{base}/fInvMass{name}Kaonvs{name}", mass[mask], m_kaon[mask])
        _fill_v0_group(registry, base, sel_v0, sel_pos, sel_neg)
        registry.fill(f"{base}/PosDaughter/{pos_hist}", sel_pos["fTPCInnerParam"], pos_nsigma[mask])
        registry.fill(f"{base}/NegDaughter/{neg_hist}", sel_neg["fTPCInnerParam"], neg_nsigma[mask])

    accepted = lambdas | anti_lambdas
    if np.any(accepted):
        _append_v0_rows(tables, v0s, pos, neg, femto_collision, accepted, lambdas[accepted], runtime_config)
    return int(np.count_nonzero(lambdas)), int(np.count_nonzero(anti_lambdas))


def _append_v0_rows(
    tables: FemtoTables,
    v0s: Columns,
    pos: Columns,
    neg: Columns,
    femto_collision: np.ndarray,
    accepted: np.ndarray,
    is_lambda: np.ndarray,
    runtime_config: RuntimeConfig,
) -> None:
    """Positive daughter, negative daughter and V0 row for every accepted candidate."""
    femto = runtime_config.femto
    n = int(np.count_nonzero(accepted))
    first = tables.particles.size
    pos_rows = first + 3 * np.arange(n)

    def interleave(pos_values: Any, neg_values: Any, v0_values: Any) -> np.ndarray:
        parts = [np.broadcast_to(np.asarray(v), (n,)) for v in (pos_values, neg_values, v0_values)]
        return np.stack(parts, axis=1).ravel()

    def column(name: str) -> np.ndarray:
        return interleave(np.asarray(pos[name])[accepted], np.asarray(neg[name])[accepted], np.asarray(v0s[name])[accepted])

    proton_bit = femto.pidbit_v0_child_proton
    pion_bit = femto.pidbit_v0_child_pion
    tables.particles.append(
        np.repeat(femto_collision[accepted], 3),
        column("fPt"),
        column("fEta"),
        column("fPhi"),
        interleave(PART_TYPE_V0_CHILD, PART_TYPE_V0_CHILD, PART_TYPE_V0),
        interleave(femto.cutbit_v0_child_pos, femto.cutbit_v0_child_neg, femto.cutbit_v0),
        interleave(np.where(is_lambda, proton_bit, pion_bit), np.where(is_lambda, pion_bit, proton_bit), 0),
        interleave(np.asarray(pos["fDcaXY"])[accepted], np.asarray(neg["fDcaXY"])[accepted], np.asarray(v0s["fV0CosPA"])[accepted]),
        children=(interleave(0, 0, pos_rows), interleave(0, 0, pos_rows + 1)),
        m_lambda=interleave(0.0, 0.0, np.asarray(v0s["fMLambda"])[accepted]),
        m_anti_lambda=interleave(0.0, 0.0, np.asarray(v0s["fMAntiLambda"])[accepted]),
    )


def process_run_block(
    collisions: Columns,
    tracks: Columns,
    runtime_config: RuntimeConfig,
    registry: Any,
    tables: FemtoTables,
    bb_cache: BetheBlochCache,
    v0s: Columns | None = None,
) -> dict[str, int]:
    """Process the collisions of one run with the tracks (and V0s) attached to them."""
    registry.fill("EventCuts/fMultiplicityBefore", collisions["fMultNTracksPV"])
    registry.fill("EventCuts/fZvtxBefore", collisions["fPosZ"])

    counts = {"events": 0, "protons": 0, "antiprotons": 0, "deuterons": 0, "antideuterons": 0, "lambdas": 0, "antilambdas": 0}
    selected = select_rows(collisions, is_selected_event(collisions, runtime_config.event))
    n_selected = len(selected["fPosZ"])
    if n_selected == 0:
        return counts
    counts["events"] = n_selected
    femto_rows = tables.collisions.append(selected["fPosZ"], selected["fMultFV0M"], selected["fMultNTracksPV"])
    registry.fill("EventCuts/fMultiplicityAfter", selected["fMultNTracksPV"])
    registry.fill("EventCuts/fZvtxAfter", selected["fPosZ"])

    ids = np.asarray(selected["fIndex"])
    order = np.argsort(ids, kind="stable")

    def femto_collision_of(table: Columns) -> np.ndarray:
        return femto_rows[order[np.searchsorted(ids[order], np.asarray(table["fIndexCollisions"]))]]

    trk = select_rows(tracks, rows_of_collisions(tracks, ids))
    if len(trk["fPt"]):
        femto_collision = femto_collision_of(trk)
        registry.fill("TrackCuts/TracksBefore/fPtTrackBefore", trk["fPt"])
        registry.fill("TrackCuts/TracksBefore/fEtaTrackBefore", trk["fEta"])
        registry.fill("TrackCuts/TracksBefore/fPhiTrackBefore", trk["fPhi"])
        nsigma_pos, nsigma_neg = track_nsigma(trk, runtime_config, bb_cache)
        counts["protons"], counts["antiprotons"] = _process_protons(
            trk, femto_collision, nsigma_pos, nsigma_neg, runtime_config, registry, tables
        )
        if runtime_config.process_deuterons:
            counts["deuterons"], counts["antideuterons"] = _process_deuterons(
                trk, femto_collision, nsigma_pos, nsigma_neg, runtime_config, registry, tables, bb_cache
            )

    if runtime_config.process_v0s and v0s is not None:
        sel_v0s = select_rows(v0s, rows_of_collisions(v0s, ids))
        if len(sel_v0s["fPt"]):
            counts["lambdas"], counts["antilambdas"] = _process_v0s(
                sel_v0s, femto_collision_of(sel_v0s), runtime_config, registry, tables, bb_cache
            )
    return counts


def merge_time_frames(
    collision_frames: Mapping[str, Columns],
    track_frames: Mapping[str, Columns],
    v0_frames: Mapping[str, Columns] | None = None,
) -> tuple[dict[str, np.ndarray], dict[str, np.ndarray], dict[str, np.ndarray] | None]:
    """Concatenate per time-frame tables into globally indexed ones.

    Collision indices are local to each time frame. ``fIndex`` is the entry
    number of the collision in its frame plus the number of collisions in the
    preceding frames, and the same offset is added to the ``fIndexCollisions``
    of the tracks and V0s of that frame. Unassigned rows (negative index) are
    left untouched.
    """
    collisions: list[Columns] = []
    tracks: list[Columns] = []
    v0s: list[Columns] = []
    offset = 0
    for key, frame in collision_frames.items():
        n = table_length(frame)
        collisions.append({**frame, "fIndex": np.arange(offset, offset + n, dtype=np.int64)})
        for source, out in ((track_frames, tracks), (v0_frames, v0s)):
            if source is None:
                continue
            if key not in source:
                LOGGER.warning("Time frame %s has collisions but no rows in an attached table", key)
                continue
            local = np.asarray(source[key]["fIndexCollisions"], dtype=np.int64)
            out.append({**source[key], "fIndexCollisions": np.where(local >= 0, local + offset, local)})
        offset += n
    unmatched = [key for key in track_frames if key not in collision_frames]
    if unmatched:
        LOGGER.warning("Ignoring tracks of %d time frame(s) without collisions", len(unmatched))
    merged_v0s = concat_tables(v0s, V0_COLUMNS) if v0_frames is not None else None
    return concat_tables(collisions, COLLISION_COLUMNS + ["fIndex"]), concat_tables(tracks, TRACK_COLUMNS), merged_v0s


def process(
    collisions: Columns,
    tracks: Columns,
    runtime_config: RuntimeConfig,
    registry: Any,
    tables: FemtoTables,
    bb_cache: BetheBlochCache,
    v0s: Columns | None = None,
) -> dict[str, int]:
    if not runtime_config.is_run3:
        raise RuntimeError("Run 2 processing is not implemented!")
    ids = np.asarray(collisions["fIndex"])
    if np.unique(ids).size != ids.size:
        raise ValueError("Collision indices must be unique across time frames")
    totals: dict[str, int] = {}
    for run_number, rows in iter_run_blocks(collisions):
        block = select_rows(collisions, rows)
        if bb_cache.update(run_number, int(block["fTimestamp"][0])):
            LOGGER.info("Bethe-Bloch parameters refreshed for run %d", run_number)
        counts = process_run_block(block, tracks, runtime_config, registry, tables, bb_cache, v0s)
        for key, value in counts.items():
            totals[key] = totals.get(key, 0) + value
    return totals


def write_femto_tables(tables: FemtoTables, output_file: str) -> None:
    snapshot_columns(tables.collisions.columns(), COLLISION_TREE, output_file)
    snapshot_columns(
        tables.particles.columns(),
        PARTICLE_TREE,
        output_file,
        defines={"fChildrenIds": "ROOT::RVecI{fChildrenIds0, fChildrenIds1}"},
        drop=["fChildrenIds0", "fChildrenIds1"],
        update=True,
    )


def analyse_cffilter_qa(input_file: str, output_file: str, femto_output: str, runtime_config: RuntimeConfig) -> dict[str, int]:
    LOGGER.info("analyse_cffilter_qa start input=%s output=%s femto_output=%s", input_file, output_file, femto_output)
    if not runtime_config.is_run3:
        raise RuntimeError("Run 2 processing is not implemented!")
    import ROOT

    collision_frames = read_frames(runtime_config.table_name("collisions"), input_file, COLLISION_COLUMNS)
    track_frames = read_frames(runtime_config.table_name("tracks"), input_file, TRACK_COLUMNS)
    v0_frames = read_frames(runtime_config.table_name("v0s"), input_file, V0_COLUMNS) if runtime_config.process_v0s else None
    collisions, tracks, v0s = merge_time_frames(collision_frames, track_frames, v0_frames)
    LOGGER.info(
        "Loaded %d collisions and %d tracks from %d time frame(s)", len(collisions["fPosZ"]), len(tracks["fPt"]), len(collision_frames)
    )

    registry = HistogramRegistry(TASK_DIRECTORY)
    book_histograms(registry, runtime_config)
    manual = runtime_config.manual_pid
    bb_cache = BetheBlochCache(
        LocalCalibrationStore(runtime_config.paths["calibration_dir"]), manual.paths, manual.requested_sets()
    )
    tables = FemtoTables()
    totals = process(collisions, tracks, runtime_config, registry, tables, bb_cache, v0s)

    out_name = expand(output_file)
    ensure_parent(out_name)
    out = ROOT.TFile(out_name, "recreate")
    registry.write(out)
    out.Close()
    write_femto_tables(tables, femto_output)
    LOGGER.info("analyse_cffilter_qa done output=%s counts=%s", output_file, totals)
    return totals
