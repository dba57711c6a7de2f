import unittest

from cfqa import settings as s


class TestRuntimeConfig(unittest.TestCase):
    def test_cffilter_defaults(self) -> None:
        runtime = s.current_runtime_config()

        self.assertEqual(runtime.task, "cffilter_qa")
        self.assertTrue(runtime.is_run3)
        self.assertFalse(runtime.process_deuterons)
        self.assertAlmostEqual(runtime.event.zvtx_max, 10.0)
        self.assertAlmostEqual(runtime.track.eta_max, 0.85)
        self.assertAlmostEqual(runtime.track.dcaxy_max, 0.15)
        self.assertAlmostEqual(runtime.track.tpc_ncls_min.get("TPCNClusMin", "Proton"), 60.0)
        self.assertAlmostEqual(runtime.pid.pt_cuts.get("Proton", "P thres"), 0.75)
        self.assertAlmostEqual(runtime.v0.cpa_min, 0.985)
        self.assertEqual(runtime.femto.cutbit_part, 8190)
        self.assertEqual(runtime.femto.cutbit_antipart, 8189)
        self.assertEqual(runtime.femto.pidbit_proton, 1)
        self.assertEqual(runtime.manual_pid.requested_sets(), [])
        self.assertIsNone(runtime.ft0)
        self.assertEqual(runtime.table_name("tracks"), "O2cfqatrack")

    def test_merge_config_keeps_nested_defaults(self) -> None:
        merged = s.merge_config({"track": {"dcaxy_max": 0.1}})

        self.assertEqual(merged["track"]["dcaxy_max"], 0.1)
        self.assertEqual(merged["track"]["eta_max"], 0.85)
        self.assertIn("tpc_ncls_min", merged["track"])
        self.assertIn("femto", merged)

    def test_ft0_task_uses_its_own_defaults(self) -> None:
        runtime = s.current_runtime_config({"run": {"task": "ft0_qa"}})

        self.assertEqual(runtime.task, "ft0_qa")
        self.assertAlmostEqual(runtime.ft0.time_window_ns, 12.5)
        self.assertEqual(runtime.ft0.vertex_trigger_bit, 2)
        self.assertIsNone(runtime.track)
        self.assertEqual(runtime.table_name("ft0"), "O2ft0")

    def test_unknown_task_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "Unsupported task"):
            s.current_runtime_config({"run": {"task": "nope"}})

    def test_unknown_table_key_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "tables.ft0"):
            s.current_runtime_config().table_name("ft0")

    def test_vertex_trigger_bit_range(self) -> None:
        with self.assertRaisesRegex(ValueError, "vertex_trigger_bit"):
            s.current_runtime_config({"run": {"task": "ft0_qa"}, "ft0": {"vertex_trigger_bit": 9}})

    def test_inverted_lambda_mass_window(self) -> None:
        with self.assertRaisesRegex(ValueError, "inv_mass_low"):
            s.current_runtime_config({"v0": {"inv_mass_low": 1.2}})

    def test_labeled_array_shape_is_validated(self) -> None:
        with self.assertRaisesRegex(ValueError, "rows of values"):
            s.current_runtime_config({"pid": {"cuts": {"values": [[-3.0, 3.0, -3.0, 3.0, 3.0]]}}})

    def test_negative_cut_bit_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "cutbit_part"):
            s.current_runtime_config({"femto": {"cutbit_part": -1}})

    def test_override_reaches_runtime(self) -> None:
        runtime = s.current_runtime_config(
            {"run": {"process_v0s": True}, "pid": {"pt_cuts": {"values": [[0.5, 4.0, 0.8], [0.35, 1.6, 99.0], [0.35, 6.0, 99.0]]}}}
        )
        self.assertTrue(runtime.process_v0s)
        self.assertAlmostEqual(runtime.pid.pt_cuts.get("Proton", "Pt min"), 0.5)
        self.assertAlmostEqual(runtime.pid.pt_cuts.get(0, 2), 0.8)


class TestLabeledArray(unittest.TestCase):
    def setUp(self) -> None:
        self.table = s.LabeledArray([[1.0, 2.0], [3.0, 4.0]], ["Proton", "Pion"], ["TPC min", "TPC max"])

    def test_get_by_label_and_index(self) -> None:
        self.assertEqual(self.table.get("Pion", "TPC min"), 3.0)
        self.assertEqual(self.table.get(0, 1), 2.0)
        self.assertEqual(self.table.get("Proton", 1), 2.0)

    def test_unknown_label(self) -> None:
        with self.assertRaises(KeyError):
            self.table.get("Kaon", "TPC min")

    def test_index_out_of_range(self) -> None:
        with self.assertRaises(IndexError):
            self.table.get(0, 2)

    def test_ragged_rows(self) -> None:
        with self.assertRaisesRegex(ValueError, "column labels"):
            s.LabeledArray([[1.0], [3.0, 4.0]], ["Proton", "Pion"], ["TPC min", "TPC max"])


class TestManualPID(unittest.TestCase):
    def _manual(self, **switches: bool) -> s.ManualPID:
        flags = {name: False for name in ("proton", "deuteron", "pion", "electron", "daughter_pion", "daughter_proton")}
        flags.update(switches)
        return s.ManualPID(paths={}, **flags)

    def test_requested_sets_follow_switches(self) -> None:
        self.assertEqual(self._manual(proton=True).requested_sets(), ["proton", "antiproton"])
        self.assertEqual(
            self._manual(deuteron=True, daughter_proton=True).requested_sets(),
            ["proton", "antiproton", "deuteron", "antideuteron"],
        )
        self.assertEqual(
            self._manual(proton=True, daughter_pion=True).requested_sets(),
            ["proton", "antiproton", "pion", "antipion"],
        )
        self.assertEqual(
            self._manual(deuteron=True, pion=True).requested_sets(),
            ["deuteron", "antideuteron", "pion", "antipion", "electron", "antielectron"],
        )

    def test_nothing_fetched_without_proton_or_deuteron(self) -> None:
        self.assertEqual(self._manual(pion=True).requested_sets(), [])
        self.assertEqual(self._manual(electron=True).requested_sets(), [])
        self.assertEqual(self._manual(daughter_pion=True, daughter_proton=True).requested_sets(), [])
        self.assertFalse(self._manual(pion=True, electron=True).enabled)
        self.assertTrue(self._manual(deuteron=True).enabled)

    def test_electron_sets_follow_pion_switch(self) -> None:
        sets = self._manual(proton=True, electron=True).requested_sets()
        self.assertNotIn("electron", sets)
        self.assertNotIn("antielectron", sets)


if __name__ == "__main__":
    unittest.main()
