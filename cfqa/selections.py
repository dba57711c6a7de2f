"""Event, track, V0-daughter and V0 selections.

Every predicate works on a mapping of column name to numpy array (one entry
per row) and returns a boolean mask. Scalars broadcast, so a single row can be
checked by passing 0-d values.
"""

from typing import Any, Mapping

import numpy as np

from .pid import combined_nsigma
from .settings import EventSelection, PIDSelection, TrackSelection, V0DaughterSelection, V0Selection


PROTON = "Proton"
DEUTERON = "Deuteron"
LAMBDA = "Lambda"
SPECIES = (PROTON, DEUTERON, LAMBDA)

DAUGHTER_PION = "Pion"
DAUGHTER_PROTON = "Proton"

# Index of each V0 daughter hypothesis in the per-track TPC nSigma pair.
DAUGHTER_NSIGMA_INDEX = {DAUGHTER_PROTON: 0, DAUGHTER_PION: 1}
# Index of each track species in the per-track TPC nSigma pair.
SPECIES_NSIGMA_INDEX = {PROTON: 0, DEUTERON: 1}

Columns = Mapping[str, Any]


def _col(table: Columns, name: str) -> np.ndarray:
    return np.asarray(table[name])


def _ones_like(table: Columns, name: str) -> np.ndarray:
    return np.ones(np.shape(_col(table, name)), dtype=bool)


def is_selected_event(collisions: Columns, sel: EventSelection) -> np.ndarray:
    mask = _ones_like(collisions, "fPosZ")
    if sel.select_zvtx:
        mask &= np.abs(_col(collisions, "fPosZ")) <= sel.zvtx_max
    if sel.offline_check:
        mask &= _col(collisions, "fSel8").astype(bool)
    return mask


def is_selected_track(tracks: Columns, species: str, sel: TrackSelection, pid: PIDSelection) -> np.ndarray:
    pt = _col(tracks, "fPt")
    dca_xy = np.abs(_col(tracks, "fDcaXY"))

    mask = pt >= pid.pt_cuts.get(species, "Pt min")
    mask &= pt <= pid.pt_cuts.get(species, "Pt max")
    mask &= np.abs(_col(tracks, "fEta")) <= sel.eta_max
    mask &= _col(tracks, "fTPCNClsFound") >= sel.tpc_ncls_min.get("TPCNClusMin", species)
    mask &= _col(tracks, "fTPCCrossedRowsOverFindableCls") >= sel.tpc_crossed_over_findable_min
    mask &= _col(tracks, "fTPCNClsCrossedRows") >= sel.tpc_crossed_rows_min
    mask &= _col(tracks, "fTPCNClsShared") <= sel.tpc_shared_max
    mask &= _col(tracks, "fITSNCls") >= sel.its_ncls_min
    mask &= _col(tracks, "fITSNClsInnerBarrel") >= sel.its_ncls_ib_min
    mask &= dca_xy <= sel.dcaxy_max
    mask &= np.abs(_col(tracks, "fDcaZ")) <= sel.dcaz_max
    if sel.reject_not_propagated:
        mask &= dca_xy <= 1e3
    if sel.require_chi2_tpc:
        mask &= _col(tracks, "fTPCChi2NCl") < sel.max_chi2_tpc
    if sel.require_chi2_its:
        mask &= _col(tracks, "fITSChi2NCl") < sel.max_chi2_its
    if sel.require_tpc_refit:
        mask &= _col(tracks, "fHasTPC").astype(bool)
    if sel.require_its_refit:
        mask &= _col(tracks, "fHasITS").astype(bool)
    return mask


def below_momentum_threshold(tracks: Columns, species: str, pid: PIDSelection) -> np.ndarray:
    """True where the TPC-only PID applies, false where TPC and TOF are combined."""
    threshold = pid.pt_cuts.get(species, "P thres")
    if species == DEUTERON and pid.deuteron_threshold_pv_mom:
        return _col(tracks, "fP") <= threshold
    return _col(tracks, "fTPCInnerParam") <= threshold


def _avg_row(species: str, charge: int) -> str:
    return species if charge > 0 else f"Anti{species}"


def pid_nsigma(tracks: Columns, species: str, nsigma_tpc: Any, charge: int, pid: PIDSelection) -> np.ndarray:
    """nSigma used for the PID decision: TPC below the momentum threshold, TPC-TOF above."""
    if species == LAMBDA:
        raise ValueError("No PID selection for Lambdas")
    if species not in SPECIES_NSIGMA_INDEX:
        raise ValueError(f"Particle species not known: {species}")
    tpc = np.asarray(nsigma_tpc, dtype=np.float64)
    tof = _col(tracks, "fTOFNSigmaPr" if species == PROTON else "fTOFNSigmaDe")
    row = _avg_row(species, charge)
    combined = combined_nsigma(tpc, tof, pid.tpc_tof_avg.get(row, "TPC Avg"), pid.tpc_tof_avg.get(row, "TOF Avg"))
    return np.where(below_momentum_threshold(tracks, species, pid), tpc, combined)


def is_selected_track_pid(
    tracks: Columns,
    species: str,
    rejection: bool,
    nsigma_tpc: tuple[Any, Any],
    charge: int,
    pid: PIDSelection,
    nsigma_pion: Any = None,
    nsigma_electron: Any = None,
) -> np.ndarray:
    """PID selection of track candidates.

    ``nsigma_tpc`` holds the (proton, deuteron) TPC nSigma for the charge
    hypothesis. Cut windows are taken from the particle or antiparticle table
    according to ``charge``. With ``rejection`` the candidate is dropped when
    it is compatible with the proton, pion or electron hypothesis; pion and
    electron nSigma default to the nominal track columns.
    """
    if species == LAMBDA:
        raise ValueError("No PID selection for Lambdas")
    if species not in SPECIES_NSIGMA_INDEX:
        raise ValueError(f"Particle species not known: {species}")
    nsigma = pid_nsigma(tracks, species, nsigma_tpc[SPECIES_NSIGMA_INDEX[species]], charge, pid)

    table = pid.cuts if charge > 0 else pid.cuts_anti
    row = SPECIES_NSIGMA_INDEX[species]
    tpc_min = table.get(row, "TPC min")
    tpc_max = table.get(row, "TPC max")
    tpc_tof_max = table.get(row, "TPCTOF max")

    below = below_momentum_threshold(tracks, species, pid)
    selected = np.where(below, (nsigma > tpc_min) & (nsigma < tpc_max), nsigma < tpc_tof_max)

    if rejection:
        pion = _col(tracks, "fTPCNSigmaPi") if nsigma_pion is None else np.asarray(nsigma_pion)
        electron = _col(tracks, "fTPCNSigmaEl") if nsigma_electron is None else np.asarray(nsigma_electron)
        proton = np.asarray(nsigma_tpc[0])
        rej = pid.rejection
        compatible = (
            ((rej.get("Proton", "TPC min") < proton) & (rej.get("Proton", "TPC max") > proton))
            | ((rej.get("Pion", "TPC min") < pion) & (rej.get("Pion", "TPC max") > pion))
            | ((rej.get("Electron", "TPC min") < electron) & (rej.get("Electron", "TPC max") > electron))
        )
        selected = selected & ~compatible
    return np.asarray(selected, dtype=bool)


def is_selected_v0_daughter(
    daughters: Columns,
    charge: float,
    species: str,
    nsigma_tpc: tuple[Any, Any],
    sel: V0DaughterSelection,
) -> np.ndarray:
    """Selection of one V0 daughter leg.

    ``daughters`` uses the plain track column names; ``nsigma_tpc`` holds the
    (proton, pion) TPC nSigma of the leg.
    """
    if species not in DAUGHTER_NSIGMA_INDEX:
        raise ValueError(f"Particle species for V0 daughters not found: {species}")
    sign = _col(daughters, "fSign")
    mask = _ones_like(daughters, "fSign")
    if charge < 0:
        mask &= ~(sign > 0)
    if charge > 0:
        mask &= ~(sign < 0)
    mask &= np.abs(_col(daughters, "fEta")) <= sel.eta_max
    mask &= _col(daughters, "fTPCNClsFound") >= sel.tpc_ncls_min
    mask &= np.abs(_col(daughters, "fDcaXY")) >= sel.dca_min

    nsigma = np.asarray(nsigma_tpc[DAUGHTER_NSIGMA_INDEX[species]])
    mask &= nsigma >= sel.pid_cuts.get(species, "TPC min")
    mask &= nsigma <= sel.pid_cuts.get(species, "TPC max")
    return mask


def is_selected_v0(v0s: Columns, anti: bool, sel: V0Selection) -> np.ndarray:
    """Topological and invariant-mass selection of (anti)Lambda candidates."""
    radius = _col(v0s, "fV0Radius")
    mass = _col(v0s, "fMAntiLambda" if anti else "fMLambda")

    mask = _col(v0s, "fPt") >= sel.pt_min
    mask &= _col(v0s, "fDCAV0Daughters") <= sel.dca_daughters_max
    mask &= _col(v0s, "fV0CosPA") >= sel.cpa_min
    mask &= (radius >= sel.transverse_radius_min) & (radius <= sel.transverse_radius_max)
    for coord in ("fX", "fY", "fZ"):
        mask &= np.abs(_col(v0s, coord)) <= sel.decay_vertex_max
    mask &= (mass > sel.inv_mass_low) & (mass < sel.inv_mass_up)
    if sel.reject_kaons:
        kaon = _col(v0s, "fMK0Short")
        mask &= ~((kaon > sel.kaon_mass_low) & (kaon < sel.kaon_mass_up))
    return mask


def daughter_columns(v0s: Columns, leg: str) -> dict[str, np.ndarray]:
    """Strip the ``fPos``/``fNeg`` prefix so a daughter leg reads like a track table."""
    prefix = "fPos" if leg == "pos" else "fNeg"
    out = {}
    for name, values in v0s.items():
        if name.startswith(prefix):
            out[f"f{name[len(prefix):]}"] = np.asarray(values)
    return out
