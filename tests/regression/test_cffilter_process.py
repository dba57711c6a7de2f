import unittest

import numpy as np

from cfqa import femto
from cfqa import histograms
from cfqa import pid
from cfqa import settings as s
from cfqa import tasks_cffilter as task
from cfqa.calibration import BetheBlochCache


class RecordingRegistry:
    """Stands in for the ROOT-backed registry and keeps every filled value."""

    def __init__(self, specs) -> None:
        self.specs = {spec.path: spec for spec in specs}
        self.filled: dict[str, list[np.ndarray]] = {}

    def fill(self, path, x, y=None) -> None:
        if path not in self.specs:
            raise KeyError(path)
        if (self.specs[path].dimension == 2) != (y is not None):
            raise AssertionError(f"wrong number of coordinates for {path}")
        self.filled.setdefault(path, []).append(np.atleast_1d(np.asarray(x, dtype=float)))

    def entries(self, path: str) -> int:
        return sum(len(x) for x in self.filled.get(path, []))

    def values(self, path: str) -> np.ndarray:
        chunks = self.filled.get(path, [])
        return np.concatenate(chunks) if chunks else np.zeros(0)


class _FakeAxis:
    def FindBin(self, label: str) -> int:
        return pid.BB_PARAM_LABELS.index(label) + 1


class _FakeHist:
    def __init__(self, params) -> None:
        self.params = params

    def GetXaxis(self):
        return _FakeAxis()

    def GetBinContent(self, ibin: int) -> float:
        return self.params[ibin - 1]


class _FakeProvider:
    def __init__(self, objects=None) -> None:
        self.objects = objects or {}
        self.calls: list[tuple[str, int]] = []

    def retrieve(self, path, timestamp):
        self.calls.append((path, timestamp))
        params = self.objects.get(path)
        return _FakeHist(params) if params is not None else None


GOOD_TRACK = {
    "fIndexCollisions": 0,
    "fPt": 1.0,
    "fEta": 0.1,
    "fPhi": 1.0,
    "fP": 0.6,
    "fSign": 1,
    "fTPCInnerParam": 0.5,
    "fTPCSignal": 100.0,
    "fTPCNClsFound": 100,
    "fTPCNClsCrossedRows": 120,
    "fTPCCrossedRowsOverFindableCls": 1.0,
    "fTPCNClsShared": 0,
    "fITSNCls": 7,
    "fITSNClsInnerBarrel": 3,
    "fDcaXY": 0.01,
    "fDcaZ": 0.01,
    "fTPCChi2NCl": 1.0,
    "fITSChi2NCl": 1.0,
    "fHasTPC": True,
    "fHasITS": True,
    "fTPCNSigmaEl": 10.0,
    "fTPCNSigmaPi": 10.0,
    "fTPCNSigmaPr": 0.5,
    "fTPCNSigmaDe": 5.0,
    "fTOFNSigmaPr": 0.0,
    "fTOFNSigmaDe": 0.0,
}


def make_tracks(n: int, **columns) -> dict[str, np.ndarray]:
    out = {name: np.full(n, value) for name, value in GOOD_TRACK.items()}
    for name, values in columns.items():
        out[name] = np.asarray(values)
    return out


def make_collisions(**columns) -> dict[str, np.ndarray]:
    n = len(columns["fIndex"])
    out = {
        "fPosZ": np.zeros(n),
        "fSel8": np.ones(n, dtype=bool),
        "fMultNTracksPV": np.full(n, 10),
        "fMultFV0M": np.full(n, 100.0),
        "fRunNumber": np.full(n, 500),
        "fTimestamp": np.full(n, 1000),
    }
    out.update({name: np.asarray(values) for name, values in columns.items()})
    return out


def make_lambda_v0s() -> dict[str, np.ndarray]:
    out = {
        "fIndexCollisions": np.array([0]),
        "fPt": np.array([1.0]),
        "fEta": np.array([0.2]),
        "fPhi": np.array([2.0]),
        "fDCAV0Daughters": np.array([0.5]),
        "fV0CosPA": np.array([0.99]),
        "fV0Radius": np.array([5.0]),
        "fX": np.array([1.0]),
        "fY": np.array([1.0]),
        "fZ": np.array([1.0]),
        "fMLambda": np.array([1.115]),
        "fMAntiLambda": np.array([1.3]),
        "fMK0Short": np.array([0.3]),
    }
    legs = {
        "Pos": {"Pt": 0.8, "Sign": 1, "DcaXY": 0.1},
        "Neg": {"Pt": 0.3, "Sign": -1, "DcaXY": -0.2},
    }
    for leg, fields in legs.items():
        values = {
            "Eta": 0.1,
            "Phi": 1.0,
            "TPCInnerParam": 0.8,
            "TPCSignal": 100.0,
            "TPCNClsFound": 100,
            "TPCNSigmaPr": 0.5,
            "TPCNSigmaPi": 0.5,
        }
        values.update(fields)
        for name, value in values.items():
            out[f"f{leg}{name}"] = np.array([value])
    return out


class TestCFFilterProcess(unittest.TestCase):
    def _run(self, cfg, collisions, tracks, v0s=None, provider=None):
        runtime = s.current_runtime_config(cfg)
        registry = RecordingRegistry(histograms.cffilter_qa_specs(runtime.process_deuterons, runtime.process_v0s))
        manual = runtime.manual_pid
        cache = BetheBlochCache(provider or _FakeProvider(), manual.paths, manual.requested_sets())
        tables = femto.FemtoTables()
        counts = task.process(collisions, tracks, runtime, registry, tables, cache, v0s)
        return counts, registry, tables

    def test_protons_over_two_runs(self) -> None:
        collisions = make_collisions(
            fIndex=[0, 1, 2],
            fPosZ=[1.0, 20.0, -3.0],
            fRunNumber=[500, 500, 501],
            fTimestamp=[1000, 1000, 2000],
        )
        tracks = make_tracks(
            6,
            fIndexCollisions=[0, 1, 2, 0, 2, 0],
            fSign=[1, 1, -1, 1, 1, -1],
            fPt=[1.0, 1.0, 2.0, 0.2, 1.2, 1.5],
            fTPCNSigmaPr=[0.5, 0.5, 0.5, 0.5, 8.0, 0.5],
            fDcaXY=[0.01, 0.01, 0.03, 0.01, 0.01, 0.02],
        )

        counts, registry, tables = self._run({}, collisions, tracks)

        self.assertEqual(counts["events"], 2)
        self.assertEqual(counts["protons"], 1)
        self.assertEqual(counts["antiprotons"], 2)
        self.assertEqual(registry.entries("EventCuts/fZvtxBefore"), 3)
        self.assertEqual(registry.entries("EventCuts/fZvtxAfter"), 2)
        self.assertEqual(registry.entries("TrackCuts/TracksBefore/fPtTrackBefore"), 5)
        np.testing.assert_allclose(registry.values("TrackCuts/Proton/fPtProton"), [1.0])
        np.testing.assert_allclose(registry.values("TrackCuts/AntiProton/fPtAntiProton"), [1.5, 2.0])

        cols = tables.collisions.columns()
        np.testing.assert_allclose(cols["fPosZ"], [1.0, -3.0])
        parts = tables.particles.columns()
        np.testing.assert_array_equal(parts["fIndexFemtoDreamCollisions"], [0, 0, 1])
        np.testing.assert_allclose(parts["fPt"], [1.0, 1.5, 2.0])
        np.testing.assert_array_equal(parts["fCut"], [8190, 8189, 8189])
        np.testing.assert_array_equal(parts["fPIDCut"], [1, 1, 1])
        np.testing.assert_array_equal(parts["fPartType"], [0, 0, 0])
        np.testing.assert_allclose(parts["fTempFitVar"], [0.01, 0.02, 0.03], rtol=1e-6)

    def test_run2_is_rejected(self) -> None:
        collisions = make_collisions(fIndex=[0])
        with self.assertRaisesRegex(RuntimeError, "Run 2 processing is not implemented"):
            self._run({"run": {"is_run3": False}}, collisions, make_tracks(1))

    def test_rejected_collisions_produce_no_rows(self) -> None:
        collisions = make_collisions(fIndex=[0], fPosZ=[11.0])
        counts, registry, tables = self._run({}, collisions, make_tracks(2))

        self.assertEqual(counts["events"], 0)
        self.assertEqual(tables.collisions.columns()["fPosZ"].size, 0)
        self.assertEqual(tables.particles.columns()["fPt"].size, 0)
        self.assertEqual(registry.entries("TrackCuts/TracksBefore/fPtTrackBefore"), 0)

    def test_manual_proton_pid_uses_recalibrated_nsigma(self) -> None:
        params = [1.0, 10.0, 3.0, 4.0, 5.0, 0.1]
        expected = float(pid.bethe_bloch_aleph(0.5 / pid.MASS_PROTON, *params[:5]))
        tracks = make_tracks(2, fSign=[1, -1], fTPCSignal=[2.0 * expected, 2.0 * expected])
        runtime = s.current_runtime_config({"manual_pid": {"proton": True}})
        provider = _FakeProvider({runtime.manual_pid.paths["proton"]: params})

        counts, registry, _ = self._run({"manual_pid": {"proton": True}}, make_collisions(fIndex=[0]), tracks, provider=provider)

        # Recalibrated nSigma of 10 rejects the proton; the antiproton set is missing so the nominal value is used.
        self.assertEqual(counts["protons"], 0)
        self.assertEqual(counts["antiprotons"], 1)
        nsigma = registry.filled["TrackCuts/NSigmaBefore/fNsigmaTPCvsPProtonBefore"]
        self.assertEqual(len(nsigma), 1)

    def test_deuterons(self) -> None:
        tracks = make_tracks(
            3,
            fSign=[1, -1, 1],
            fTPCNSigmaPr=[8.0, 8.0, 0.5],
            fTPCNSigmaDe=[0.5, -0.5, 8.0],
            fPt=[1.0, 1.1, 1.2],
        )

        counts, registry, tables = self._run(
            {"run": {"process_deuterons": True}}, make_collisions(fIndex=[0]), tracks
        )

        self.assertEqual(counts["deuterons"], 1)
        self.assertEqual(counts["antideuterons"], 1)
        self.assertEqual(counts["protons"], 1)
        self.assertEqual(registry.entries("TrackCuts/TracksBefore/fMomCorrelation"), 2)
        parts = tables.particles.columns()
        np.testing.assert_allclose(parts["fPt"], [1.2, 1.0, 1.1], rtol=1e-6)
        np.testing.assert_array_equal(parts["fPIDCut"], [1, 4, 4])
        np.testing.assert_array_equal(parts["fCut"], [8190, 8190, 8189])

    def test_lambda_candidate(self) -> None:
        counts, registry, tables = self._run(
            {"run": {"process_v0s": True}}, make_collisions(fIndex=[0]), make_tracks(0), v0s=make_lambda_v0s()
        )

        self.assertEqual(counts["lambdas"], 1)
        self.assertEqual(counts["antilambdas"], 0)
        self.assertEqual(registry.entries("TrackCuts/Lambda/fInvMassLambda"), 1)
        self.assertEqual(registry.entries("TrackCuts/AntiLambda/fInvMassAntiLambda"), 0)
        self.assertEqual(registry.entries("TrackCuts/TPCSignal/fTPCSignalProtonPlusV0Daughter"), 1)

        parts = tables.particles.columns()
        np.testing.assert_array_equal(parts["fPartType"], [2, 2, 1])
        np.testing.assert_array_equal(parts["fCut"], [8190, 8189, 8190])
        np.testing.assert_array_equal(parts["fPIDCut"], [1, 2, 0])
        np.testing.assert_array_equal(parts["fChildrenIds0"], [0, 0, 0])
        np.testing.assert_array_equal(parts["fChildrenIds1"], [0, 0, 1])
        np.testing.assert_allclose(parts["fTempFitVar"], [0.1, -0.2, 0.99], rtol=1e-6)
        np.testing.assert_allclose(parts["fMLambda"], [0.0, 0.0, 1.115], rtol=1e-6)

    def test_time_frames_with_repeated_collision_indices(self) -> None:
        frame_a = make_collisions(fIndex=[0], fRunNumber=[500], fTimestamp=[1000])
        frame_b = make_collisions(fIndex=[0], fRunNumber=[501], fTimestamp=[2000])
        tracks_a = make_tracks(1, fIndexCollisions=[0], fPt=[1.0])
        tracks_b = make_tracks(2, fIndexCollisions=[0, -1], fPt=[1.5, 3.0])
        collisions, tracks, v0s = task.merge_time_frames(
            {"AO2D.root:DF_1": frame_a, "AO2D.root:DF_2": frame_b},
            {"AO2D.root:DF_1": tracks_a, "AO2D.root:DF_2": tracks_b},
        )
        self.assertIsNone(v0s)
        np.testing.assert_array_equal(collisions["fIndex"], [0, 1])
        np.testing.assert_array_equal(tracks["fIndexCollisions"], [0, 1, -1])

        counts, _, tables = self._run({}, collisions, tracks)

        self.assertEqual(counts["protons"], 2)
        parts = tables.particles.columns()
        np.testing.assert_array_equal(parts["fIndexFemtoDreamCollisions"], [0, 1])
        np.testing.assert_allclose(parts["fPt"], [1.0, 1.5])

    def test_repeated_collision_indices_are_refused(self) -> None:
        collisions = make_collisions(fIndex=[0, 0], fRunNumber=[500, 501])
        with self.assertRaisesRegex(ValueError, "unique"):
            self._run({}, collisions, make_tracks(2, fIndexCollisions=[0, 0]))

    def test_v0s_follow_their_time_frame(self) -> None:
        frames = {"a:DF_1": make_collisions(fIndex=[0, 1]), "a:DF_2": make_collisions(fIndex=[0])}
        track_frames = {key: make_tracks(0) for key in frames}
        v0_frames = {"a:DF_2": make_lambda_v0s()}
        collisions, _, v0s = task.merge_time_frames(frames, track_frames, v0_frames)
        np.testing.assert_array_equal(collisions["fIndex"], [0, 1, 2])
        np.testing.assert_array_equal(v0s["fIndexCollisions"], [2])
        self.assertEqual(len(v0s["fPosTPCSignal"]), 1)

    def test_deuteron_rejection_with_recalibrated_pion(self) -> None:
        params = [1.0, 10.0, 3.0, 4.0, 5.0, 0.1]
        pion_signal = float(pid.bethe_bloch_aleph(0.5 / pid.MASS_PION_CHARGED, *params[:5]))
        tracks = make_tracks(
            2,
            fTPCNSigmaPr=[8.0, 8.0],
            fTPCNSigmaDe=[0.5, 0.5],
            fTPCSignal=[pion_signal, 10.0 * pion_signal],
            fPt=[1.0, 1.2],
        )
        cfg = {
            "run": {"process_deuterons": True},
            "pid": {"reject_not_deuteron": True},
            "manual_pid": {"proton": True, "pion": True},
        }
        runtime = s.current_runtime_config(cfg)
        provider = _FakeProvider({runtime.manual_pid.paths["pion"]: params})

        counts, _, tables = self._run(cfg, make_collisions(fIndex=[0]), tracks, provider=provider)

        # The first track sits on the recalibrated pion band; the nominal pion nSigma of 10 would keep it.
        self.assertEqual(counts["deuterons"], 1)
        np.testing.assert_allclose(tables.particles.columns()["fPt"], [1.2], rtol=1e-6)
        self.assertIn(runtime.manual_pid.paths["pion"], [path for path, _ in provider.calls])

        nominal = {"run": {"process_deuterons": True}, "pid": {"reject_not_deuteron": True}}
        counts, _, _ = self._run(nominal, make_collisions(fIndex=[0]), tracks, provider=provider)
        self.assertEqual(counts["deuterons"], 2)

    def test_pion_or_electron_switch_alone_fetches_nothing(self) -> None:
        params = [1.0, 10.0, 3.0, 4.0, 5.0, 0.1]
        pion_signal = float(pid.bethe_bloch_aleph(0.5 / pid.MASS_PION_CHARGED, *params[:5]))
        tracks = make_tracks(1, fTPCNSigmaPr=[8.0], fTPCNSigmaDe=[0.5], fTPCSignal=[pion_signal])
        for switch in ("pion", "electron"):
            cfg = {
                "run": {"process_deuterons": True},
                "pid": {"reject_not_deuteron": True},
                "manual_pid": {switch: True},
            }
            runtime = s.current_runtime_config(cfg)
            provider = _FakeProvider({path: params for path in runtime.manual_pid.paths.values()})

            counts, _, _ = self._run(cfg, make_collisions(fIndex=[0]), tracks, provider=provider)

            self.assertEqual(provider.calls, [], switch)
            self.assertEqual(counts["deuterons"], 1, switch)


if __name__ == "__main__":
    unittest.main()
