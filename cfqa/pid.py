from typing import Any, Sequence

import numpy as np


MASS_ELECTRON = 0.000510998950
MASS_PION_CHARGED = 0.13957039
MASS_PROTON = 0.93827208816
MASS_LAMBDA = 1.115683
MASS_DEUTERON = 1.87561294257
MASS_K0SHORT = 0.497611

# Bin labels of the calibration histogram, in parameter order.
BB_PARAM_LABELS = ("bb1", "bb2", "bb3", "bb4", "bb5", "Resolution")
N_BB_PARAMS = len(BB_PARAM_LABELS)

MASS_BY_HYPOTHESIS = {
    "electron": MASS_ELECTRON,
    "pion": MASS_PION_CHARGED,
    "proton": MASS_PROTON,
    "deuteron": MASS_DEUTERON,
}


def bethe_bloch_aleph(bg: Any, kp1: float, kp2: float, kp3: float, kp4: float, kp5: float) -> Any:
    """ALEPH parameterisation of the mean TPC energy loss as a function of beta*gamma."""
    bg = np.asarray(bg, dtype=np.float64)
    beta = bg / np.sqrt(1.0 + bg * bg)
    aa = np.power(beta, kp4)
    bb = np.log(kp3 + np.power(1.0 / bg, kp5))
    return (kp2 - aa - bb) * kp1 / aa


def has_complete_params(params: Sequence[float] | None) -> bool:
    return params is not None and len(params) == N_BB_PARAMS


def updated_nsigma(inner_param: Any, tpc_signal: Any, mass: float, params: Sequence[float]) -> np.ndarray:
    """TPC nSigma recomputed from a Bethe-Bloch parameter set.

    ``params`` holds the five ALEPH coefficients followed by the relative
    resolution. The momentum at the TPC inner wall is scaled by ``1 / mass``
    to obtain beta*gamma for the hypothesis.
    """
    if not has_complete_params(params):
        raise ValueError(f"Bethe-Bloch parameter set needs {N_BB_PARAMS} values, got {0 if params is None else len(params)}.")
    exp_bethe = bethe_bloch_aleph(np.asarray(inner_param, dtype=np.float64) / mass, *params[:5])
    exp_sigma = exp_bethe * params[5]
    return ((np.asarray(tpc_signal, dtype=np.float64) - exp_bethe) / exp_sigma).astype(np.float32)


def combined_nsigma(nsigma_tpc: Any, nsigma_tof: Any, tpc_avg: float = 0.0, tof_avg: float = 0.0) -> np.ndarray:
    tpc = np.asarray(nsigma_tpc, dtype=np.float64) - tpc_avg
    tof = np.asarray(nsigma_tof, dtype=np.float64) - tof_avg
    return np.sqrt(tpc * tpc + tof * tof)


def bb_params_from_hist(hist: Any) -> list[float]:
    """Read the Bethe-Bloch parameters from a histogram with labelled bins."""
    axis = hist.GetXaxis()
    return [float(hist.GetBinContent(axis.FindBin(label))) for label in BB_PARAM_LABELS]


def recalibrated_nsigma(
    nominal: Any,
    inner_param: Any,
    tpc_signal: Any,
    hypothesis: str,
    params: Sequence[float] | None,
) -> np.ndarray:
    """Return the recalibrated nSigma when ``params`` is complete, the nominal one otherwise."""
    if not has_complete_params(params):
        return np.asarray(nominal, dtype=np.float64)
    mass = MASS_BY_HYPOTHESIS[hypothesis]
    return updated_nsigma(inner_param, tpc_signal, mass, params).astype(np.float64)
