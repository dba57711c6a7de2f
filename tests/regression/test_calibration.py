from pathlib import Path
import tempfile
import unittest

from cfqa import calibration
from cfqa import pid


class _FakeAxis:
    def FindBin(self, label: str) -> int:
        return pid.BB_PARAM_LABELS.index(label) + 1


class _FakeHist:
    def __init__(self, params: list[float]) -> None:
        self.params = params

    def GetXaxis(self) -> _FakeAxis:
        return _FakeAxis()

    def GetBinContent(self, ibin: int) -> float:
        return self.params[ibin - 1]


class _FakeProvider:
    def __init__(self, objects: dict[str, list[float]]) -> None:
        self.objects = objects
        self.calls: list[tuple[str, int]] = []

    def retrieve(self, path: str, timestamp: int):
        self.calls.append((path, timestamp))
        params = self.objects.get(path)
        return _FakeHist(params) if params is not None else None


PARAMS = [1.0, 10.0, 3.0, 4.0, 5.0, 0.1]
PATHS = {"proton": "PID/Proton", "antiproton": "PID/AntiProton"}


class TestResolveSnapshot(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name
        obj_dir = Path(self.root) / "PID" / "Proton"
        obj_dir.mkdir(parents=True)
        for name in ("100_200.root", "150_300.root", "notes.txt"):
            (obj_dir / name).touch()
        self.obj_dir = obj_dir

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_picks_interval_containing_timestamp(self) -> None:
        self.assertEqual(calibration.resolve_snapshot(self.root, "PID/Proton", 120), str(self.obj_dir / "100_200.root"))
        self.assertEqual(calibration.resolve_snapshot(self.root, "PID/Proton", 250), str(self.obj_dir / "150_300.root"))

    def test_latest_upload_wins_on_overlap(self) -> None:
        self.assertEqual(calibration.resolve_snapshot(self.root, "/PID/Proton/", 160), str(self.obj_dir / "150_300.root"))

    def test_upper_edge_is_exclusive(self) -> None:
        self.assertIsNone(calibration.resolve_snapshot(self.root, "PID/Proton", 300))

    def test_snapshot_fallback(self) -> None:
        (self.obj_dir / "snapshot.root").touch()
        self.assertEqual(calibration.resolve_snapshot(self.root, "PID/Proton", 50), str(self.obj_dir / "snapshot.root"))

    def test_missing_directory(self) -> None:
        self.assertIsNone(calibration.resolve_snapshot(self.root, "PID/Pion", 120))


class TestBetheBlochCache(unittest.TestCase):
    def test_fetches_once_per_run(self) -> None:
        provider = _FakeProvider({"PID/Proton": PARAMS, "PID/AntiProton": PARAMS})
        cache = calibration.BetheBlochCache(provider, PATHS, ["proton", "antiproton"])

        self.assertTrue(cache.update(500, 1000))
        self.assertFalse(cache.update(500, 2000))
        self.assertEqual(len(provider.calls), 2)
        self.assertEqual(cache.get("proton"), PARAMS)

        self.assertTrue(cache.update(501, 3000))
        self.assertEqual(len(provider.calls), 4)
        self.assertEqual(provider.calls[-1], ("PID/AntiProton", 3000))

    def test_missing_object_falls_back_to_empty(self) -> None:
        provider = _FakeProvider({"PID/Proton": PARAMS})
        cache = calibration.BetheBlochCache(provider, PATHS, ["proton", "antiproton"])

        with self.assertLogs("cfqa.calibration", "INFO") as logs:
            cache.update(500, 1000)

        self.assertEqual(cache.get("antiproton"), [])
        self.assertEqual(cache.get("proton"), PARAMS)
        self.assertTrue(any("was not found for run 500" in line for line in logs.output))

    def test_nothing_requested(self) -> None:
        provider = _FakeProvider({})
        cache = calibration.BetheBlochCache(provider, PATHS, [])

        self.assertFalse(cache.update(500, 1000))
        self.assertEqual(provider.calls, [])
        self.assertEqual(cache.get("proton"), [])


if __name__ == "__main__":
    unittest.main()
