"""Histogram declarations of the QA tasks.

Paths and binning follow the directory layout of the analysis output, e.g.
``TrackCuts/Proton/fPtProton`` ends up in ``cf-filter-qa/TrackCuts/Proton``.
"""

import math

from .registry import HistSpec, h1, h2


TWO_PI = 2.0 * math.pi

_NSIGMA = ((100, 0.0, 10.0), (100, -10.0, 10.0))
_NSIGMA_COMBINED = ((100, 0.0, 10.0), (100, 0.0, 10.0))
_TPC_SIGNAL = ((1000, 0.0, 6.0), (2000, -100.0, 1000.0))
_TPC_SIGNAL_FINE = ((1000, 0.0, 6.0), (20000, -100.0, 1000.0))
_MOMENTUM = ((1000, 0.0, 100.0), (1000, 0.0, 100.0))
_INV_MASS_LAMBDA = (1000, 1.03, 1.5)
_INV_MASS_KAON = (1000, 0.3, 0.6)


def event_specs() -> list[HistSpec]:
    return [
        h1("EventCuts/fMultiplicityBefore", "Multiplicity of all processed events", 1000, 0, 1000),
        h1("EventCuts/fMultiplicityAfter", "Multiplicity after event cuts", 1000, 0, 1000),
        h1("EventCuts/fZvtxBefore", "Zvtx of all processed events", 1000, -15, 15),
        h1("EventCuts/fZvtxAfter", "Zvtx after event cuts", 1000, -15, 15),
    ]


def tracks_before_specs() -> list[HistSpec]:
    return [
        h1("TrackCuts/TracksBefore/fPtTrackBefore", "Transverse momentum of all processed tracks", 1000, 0, 10),
        h1("TrackCuts/TracksBefore/fEtaTrackBefore", "Pseudorapidity of all processed tracks", 1000, -2, 2),
        h1("TrackCuts/TracksBefore/fPhiTrackBefore", "Azimuthal angle of all processed tracks", 720, 0, TWO_PI),
        h2("TrackCuts/TracksBefore/fMomCorrelation", "fMomCorrelation", *_MOMENTUM),
        h2("TrackCuts/TracksBefore/fMomCorrelationAfterCuts", "fMomCorrelationAfterCuts", *_MOMENTUM),
    ]


def nsigma_before_specs(particle: str) -> list[HistSpec]:
    """TPC, TOF and combined nSigma versus TPC inner-wall momentum before any selection."""
    base = "TrackCuts/NSigmaBefore"
    return [
        h2(f"{base}/fNsigmaTPCvsP{particle}Before", f"NSigmaTPC {particle} Before", *_NSIGMA),
        h2(f"{base}/fNsigmaTOFvsP{particle}Before", f"NSigmaTOF {particle} Before", *_NSIGMA),
        h2(f"{base}/fNsigmaTPCTOFvsP{particle}Before", f"NSigmaTPCTOF {particle} Before", *_NSIGMA_COMBINED),
    ]


def tpc_signal_specs() -> list[HistSpec]:
    base = "TrackCuts/TPCSignal"
    out = []
    for anti in ("", "Anti"):
        out += [
            h2(f"{base}/fTPCSignal{anti}", "TPCSignal", *_TPC_SIGNAL),
            h2(f"{base}/fTPCSignal{anti}P", "TPCSignalP", *_TPC_SIGNAL),
            h2(f"{base}/fTPCSignal{anti}ALLCUTS", "TPCSignalALLCUTS", *_TPC_SIGNAL),
            h2(f"{base}/fTPCSignal{anti}ALLCUTSP", "TPCSignalALLCUTSP", *_TPC_SIGNAL),
        ]
    for name in ("Proton", "AntiProton"):
        out.append(h2(f"{base}/fTPCSignal{name}", f"fTPCSignal{name}", *_TPC_SIGNAL_FINE))
    return out


def v0_daughter_qa_specs() -> list[HistSpec]:
    """Daughter TPC signal and nSigma of the V0 legs before the V0 selection."""
    out = [
        h2(f"TrackCuts/TPCSignal/fTPCSignal{name}V0Daughter", f"fTPCSignal{name}V0Daughter", *_TPC_SIGNAL_FINE)
        for name in ("PionMinus", "PionPlus", "ProtonMinus", "ProtonPlus")
    ]
    base = "TrackCuts/NSigmaBefore"
    out += [
        h2(f"{base}/fNsigmaTPCvsPProtonV0DaughBefore", "NSigmaTPC Proton V0Daught Before", *_NSIGMA),
        h2(f"{base}/fNsigmaTPCvsPPionMinusV0DaughBefore", "NSigmaTPC AntiPion V0Daught Before", *_NSIGMA),
        h2(f"{base}/fNsigmaTPCvsPAntiProtonAntiV0DaughBefore", "NSigmaTPC AntiProton antiV0Daught Before", *_NSIGMA),
        h2(f"{base}/fNsigmaTPCvsPPionPlusAntiV0DaughBefore", "NSigmaTPC Pion antiV0Daught Before", *_NSIGMA),
    ]
    return out


def selected_particle_specs(particle: str) -> list[HistSpec]:
    """QA of tracks passing the quality and PID selection for ``particle``."""
    base = f"TrackCuts/{particle}"
    out = []
    if particle == "Proton":
        out += [
            h1(f"{base}/fPProton", "Momentum of protons at PV", 1000, 0, 10),
            h1(f"{base}/fPTPCProton", "Momentum of protons at TPC inner wall", 1000, 0, 10),
        ]
    out += [
        h1(f"{base}/fPt{particle}", "Transverse momentum of all processed tracks", 1000, 0, 10),
        h1(f"{base}/fEta{particle}", "Pseudorapidity of all processed tracks", 1000, -2, 2),
        h1(f"{base}/fPhi{particle}", "Azimuthal angle of all processed tracks", 720, 0, TWO_PI),
        h2(f"{base}/fNsigmaTPCvsP{particle}", f"NSigmaTPC {particle}", *_NSIGMA),
        h2(f"{base}/fNsigmaTOFvsP{particle}", f"NSigmaTOF {particle}", *_NSIGMA),
        h2(f"{base}/fNsigmaTPCTOFvsP{particle}", f"NSigmaTPCTOF {particle}", *_NSIGMA_COMBINED),
        h1(f"{base}/fDCAxy{particle}", f"fDCAxy {particle}", 500, -0.5, 0.5),
        h1(f"{base}/fDCAz{particle}", f"fDCAz {particle}", 500, -0.5, 0.5),
        h1(f"{base}/fTPCsCls{particle}", f"fTPCsCls {particle}", 163, -1.0, 162.0),
        h1(f"{base}/fTPCcRows{particle}", f"fTPCcRows {particle}", 163, -1.0, 162.0),
        h1(f"{base}/fTrkTPCfCls{particle}", f"fTrkTPCfCls {particle}", 500, 0.0, 3.0),
        h1(f"{base}/fTPCncls{particle}", f"fTPCncls {particle}", 163, -1.0, 162.0),
    ]
    if particle in ("Deuteron", "AntiDeuteron"):
        out.append(h2(f"{base}/fNsigmaTPCvsP{particle}P", f"NSigmaTPC {particle} vd P", *_NSIGMA))
    return out


def deuteron_specs() -> list[HistSpec]:
    out = []
    for particle in ("Deuteron", "AntiDeuteron"):
        out += nsigma_before_specs(particle)
        out.append(h2(f"TrackCuts/NSigmaBefore/fNsigmaTPCvsP{particle}BeforeP", f"NSigmaTPC {particle} BeforeP", *_NSIGMA))
        out.append(h2(f"TrackCuts/TPCSignal/fTPCSignal{particle}", f"fTPCSignal{particle}", *_TPC_SIGNAL_FINE))
        out += selected_particle_specs(particle)
    return out


def _v0_topology_specs(base: str) -> list[HistSpec]:
    return [
        h1(f"{base}/fV0DCADaugh", "V0DCADaugh", 1000, -4, 4),
        h1(f"{base}/fV0CPA", "V0 CPA", 1000, 0.7, 1),
        h1(f"{base}/fV0TranRad", "V0 TranRad", 1000, 0, 150),
        h1(f"{base}/f0DecVtxX", "V0 DecVtxX", 1000, 0, 150),
        h1(f"{base}/f0DecVtxY", "V0 DecVtxY", 1000, 0, 150),
        h1(f"{base}/f0DecVtxZ", "V0 DecVtxZ", 1000, 0, 150),
    ]


def _v0_daughter_specs(base: str, label: str) -> list[HistSpec]:
    out = []
    for leg, leg_label in (("PosDaughter", "Pos"), ("NegDaughter", "Neg")):
        out += [
            h1(f"{base}/{leg}/Eta", f"{label} {leg_label} Daugh Eta", 1000, -2, 2),
            h1(f"{base}/{leg}/DCAXY", f"{label} {leg_label} Daugh DCAXY", 1000, -2.5, 2.5),
            h1(f"{base}/{leg}/fTPCncls", f"{label} {leg_label} Daugh TPCncls", 163, -1.0, 162.0),
        ]
    return out


def v0_specs() -> list[HistSpec]:
    before = "TrackCuts/V0Before"
    out = [
        h2(f"{before}/fInvMassLambdavsAntiLambda", "Invariant mass of Lambda vs AntiLambda", _INV_MASS_LAMBDA, _INV_MASS_LAMBDA),
        h1(f"{before}/fPtLambdaBefore", "Transverse momentum of all processed V0s before cuts", 1000, 0, 10),
        h1(f"{before}/fInvMassLambdaBefore", "Invariant mass of all processed V0s (Lambda) before cuts", *_INV_MASS_LAMBDA),
        h1(f"{before}/fInvMassAntiLambdaBefore", "Invariant mass of all processed V0s (antiLambda) before cuts", *_INV_MASS_LAMBDA),
        h2(f"{before}/fInvMassV0BeforeKaonvsV0Before", "Invariant mass of rejected K0 vs V0s (V0Before)", _INV_MASS_LAMBDA, _INV_MASS_KAON),
    ]
    out += _v0_topology_specs(before)
    out += _v0_daughter_specs(before, "V0Before")
    out += [
        h2(f"{before}/PosDaughter/fNsigmaTPCvsPProtonV0Daugh", "NSigmaTPC Proton V0Daught ", *_NSIGMA),
        h2(f"{before}/NegDaughter/fNsigmaTPCvsPPionMinusV0Daugh", "NSigmaTPC AntiPion V0Daught ", *_NSIGMA),
        h2(f"{before}/NegDaughter/fNsigmaTPCvsPAntiProtonV0Daugh", "NSigmaTPC Proton V0Daught ", *_NSIGMA),
        h2(f"{before}/PosDaughter/fNsigmaTPCvsPPionPlusV0Daugh", "NSigmaTPC AntiPion V0Daught ", *_NSIGMA),
    ]

    out += [
        h1("TrackCuts/Lambda/fPtLambda", "Transverse momentum of all selected V0s", 1000, 0, 10),
        h1("TrackCuts/Lambda/fInvMassLambda", "Invariant mass of all selected V0s (Lambda)", *_INV_MASS_LAMBDA),
        h2("TrackCuts/Lambda/fInvMassLambdaKaonvsLambda", "Invariant mass of rejected K0 vs V0s (Lambda)", _INV_MASS_LAMBDA, _INV_MASS_KAON),
    ]
    out += _v0_topology_specs("TrackCuts/Lambda")
    out += _v0_daughter_specs("TrackCuts/Lambda", "Lambda")
    out += [
        h2("TrackCuts/Lambda/PosDaughter/fNsigmaTPCvsPProtonV0Daugh", "NSigmaTPC Proton V0Daught ", *_NSIGMA),
        h2("TrackCuts/Lambda/NegDaughter/fNsigmaTPCvsPPionMinusV0Daugh", "NSigmaTPC AntiPion V0Daught ", *_NSIGMA),
    ]

    out += [
        h1("TrackCuts/AntiLambda/fPtAntiLambda", "Transverse momentum of all selected V0s", 1000, 0, 10),
        h1("TrackCuts/AntiLambda/fInvMassAntiLambda", "Invariant mass of all selected V0s (Lambda)", *_INV_MASS_LAMBDA),
        h2("TrackCuts/AntiLambda/fInvMassAntiLambdaKaonvsAntiLambda", "Invariant mass of rejected K0 vs V0s (Lambda)", _INV_MASS_LAMBDA, _INV_MASS_KAON),
    ]
    out += _v0_topology_specs("TrackCuts/AntiLambda")
    out += _v0_daughter_specs("TrackCuts/AntiLambda", "AntiLambda")
    out += [
        h2("TrackCuts/AntiLambda/NegDaughter/fNsigmaTPCvsPAntiProtonAntiV0Daugh", "NSigmaTPC AntiProton antiV0Daught ", *_NSIGMA),
        h2("TrackCuts/AntiLambda/PosDaughter/fNsigmaTPCvsPPionPlusAntiV0Daugh", "NSigmaTPC Pion antiV0Daught ", *_NSIGMA),
    ]
    return out


def cffilter_qa_specs(process_deuterons: bool = False, process_v0s: bool = False) -> list[HistSpec]:
    out = event_specs() + tracks_before_specs()
    out += nsigma_before_specs("Proton") + nsigma_before_specs("AntiProton")
    out += tpc_signal_specs() + v0_daughter_qa_specs()
    out += selected_particle_specs("Proton") + selected_particle_specs("AntiProton")
    if process_deuterons:
        out += deuteron_specs()
    if process_v0s:
        out += v0_specs()
    return out


# FT0 axes: (nbins, low, high, title)
FT0_AXIS_AMP = (4200, -100.0, 4200.0, "Amp [ADC]")
FT0_AXIS_SUM_AMP = (2000, 0.0, 200000.0, "SumAmp [ADC]")
FT0_AXIS_CHANNELS = (208, 0.0, 208.0, "ChannelID")
FT0_AXIS_VERTEX = (1200, -200.0, 400.0, "Vertex [cm]")
FT0_AXIS_COLLISION_TIME = (1000, -20.0, 20.0, "Collision time [ns]")
FT0_AXIS_TRIGGERS = (8, 0.0, 8.0, "Trigger bits")
FT0_AXIS_BC = (3564, 0.0, 3564.0, "BCID")


def _ft0_h1(path: str, title: str, axis: tuple) -> HistSpec:
    return h1(path, title, *axis)


def _ft0_h2(path: str, title: str, x: tuple, y: tuple) -> HistSpec:
    return h2(path, title, x[:3], y[:3], x[3], y[3])


def ft0_qa_specs() -> list[HistSpec]:
    return [
        _ft0_h2("hAmpPerChannelID", "Amplitude FT0", FT0_AXIS_CHANNELS, FT0_AXIS_AMP),
        _ft0_h2("hAmpPerChannelID_VrtTrg", "Amplitude FT0(Vertex trigger)", FT0_AXIS_CHANNELS, FT0_AXIS_AMP),
        _ft0_h2("hSumAmpAvsC", "Sum amp FT0, A vs C", FT0_AXIS_SUM_AMP[:3] + ("SumAmpA [ADC]",), FT0_AXIS_SUM_AMP[:3] + ("SumAmpC [ADC]",)),
        _ft0_h1("hSumAmpA", "Sum amp FT0, A-side", FT0_AXIS_SUM_AMP[:3] + ("SumAmpA [ADC]",)),
        _ft0_h1("hSumAmpC", "Sum amp FT0, C-side", FT0_AXIS_SUM_AMP[:3] + ("SumAmpC [ADC]",)),
        _ft0_h1("hSumAmp", "Sum amp FT0, A+C", FT0_AXIS_SUM_AMP),
        _ft0_h2(
            "hSumAmpAvsC_vrtTrg",
            "Sum amp FT0, A vs C(Vertex trigger)",
            FT0_AXIS_SUM_AMP[:3] + ("SumAmpA [ADC]",),
            FT0_AXIS_SUM_AMP[:3] + ("SumAmpC [ADC]",),
        ),
        _ft0_h1("hSumAmpA_vrtTrg", "Sum amp FT0(Vertex trigger), A-side", FT0_AXIS_SUM_AMP[:3] + ("SumAmpA [ADC]",)),
        _ft0_h1("hSumAmpC_vrtTrg", "Sum amp FT0(Vertex trigger), C-side", FT0_AXIS_SUM_AMP[:3] + ("SumAmpC [ADC]",)),
        _ft0_h1("hSumAmp_vrtTrg", "Sum amp FT0, A+C(Vertex trigger)", FT0_AXIS_SUM_AMP),
        _ft0_h1("hTriggers", "FT0 trigger bit statistics", FT0_AXIS_TRIGGERS),
        _ft0_h2("hTriggersPerBC", "FT0 trigger bit statistics per BC", FT0_AXIS_BC, FT0_AXIS_TRIGGERS),
        _ft0_h2("hVrtVsCollTime", "FT0 Vertex vs collision time", FT0_AXIS_VERTEX, FT0_AXIS_COLLISION_TIME),
        _ft0_h2("hVrtVsCollTime_vrtTrg", "FT0 Vertex vs collision time (Vertex trigger)", FT0_AXIS_VERTEX, FT0_AXIS_COLLISION_TIME),
    ]
