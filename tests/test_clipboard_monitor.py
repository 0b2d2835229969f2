import unittest

from clipboard_monitor import ClipboardError, DoubleCopyDetector, PollingClipboard


class FakeTime:
    def __init__(self, value: float = 0.0) -> None:
        self._value = value

    def set(self, value: float) -> None:
        self._value = value

    def now(self) -> float:
        return self._value


def run_ticks(detector: DoubleCopyDetector, ticks) -> list:
    """Feed ``(counter, seconds)`` pairs and return the ticks that fired."""

    return [(counter, at) for counter, at in ticks if detector.on_tick(counter, at)]


class DoubleCopyDetectorTests(unittest.TestCase):
    def _detector(self, gap: float = 0.3, initial_counter: int = 1) -> DoubleCopyDetector:
        # Constructed well before the first tick so startup never pairs with a copy.
        return DoubleCopyDetector(gap, FakeTime(-10.0).now, initial_counter=initial_counter)

    def test_two_copies_within_gap_fire(self) -> None:
        detector = self._detector()
        self.assertEqual(run_ticks(detector, [(2, 0.0), (3, 0.25)]), [(3, 0.25)])

    def test_two_copies_beyond_gap_do_not_fire(self) -> None:
        detector = self._detector()
        self.assertEqual(run_ticks(detector, [(2, 0.0), (3, 0.35)]), [])

    def test_gap_boundary_is_inclusive(self) -> None:
        detector = self._detector()
        self.assertEqual(run_ticks(detector, [(2, 0.0), (3, 0.3)]), [(3, 0.3)])

    def test_single_change_does_not_fire(self) -> None:
        detector = self._detector()
        self.assertEqual(run_ticks(detector, [(1, 0.0), (2, 0.05), (2, 0.1), (2, 0.15)]), [])

    def test_polled_sequence_without_close_pair(self) -> None:
        detector = self._detector()
        ticks = [(1, 0.0), (1, 0.04), (2, 0.08), (2, 0.13), (3, 0.5)]
        self.assertEqual(run_ticks(detector, ticks), [])

    def test_polled_sequence_with_close_pair(self) -> None:
        detector = self._detector()
        ticks = [(1, 0.0), (1, 0.05), (2, 0.10), (2, 0.15), (3, 0.20), (3, 0.25)]
        self.assertEqual(run_ticks(detector, ticks), [(3, 0.20)])

    def test_unchanged_ticks_do_not_move_reference_time(self) -> None:
        detector = self._detector()
        self.assertEqual(run_ticks(detector, [(2, 0.0), (2, 0.2), (3, 0.5)]), [])

    def test_each_copy_pairs_with_previous_one(self) -> None:
        detector = self._detector()
        self.assertEqual(
            run_ticks(detector, [(2, 0.0), (3, 0.2), (4, 0.4)]),
            [(3, 0.2), (4, 0.4)],
        )
        detector = self._detector()
        self.assertEqual(run_ticks(detector, [(2, 0.0), (3, 0.2), (4, 0.6)]), [(3, 0.2)])

    def test_first_copy_right_after_startup_fires(self) -> None:
        detector = DoubleCopyDetector(0.3, FakeTime(0.0).now, initial_counter=5)
        self.assertTrue(detector.on_tick(6, 0.1))

    def test_state_is_updated_on_change(self) -> None:
        detector = self._detector()
        detector.on_tick(9, 4.0)
        self.assertEqual(detector.last_counter, 9)
        self.assertEqual(detector.last_event_time, 4.0)

    def test_uses_clock_when_no_timestamp_given(self) -> None:
        clock = FakeTime(-10.0)
        detector = DoubleCopyDetector(0.3, clock.now, initial_counter=0)
        clock.set(1.0)
        self.assertFalse(detector.on_tick(1))
        clock.set(1.1)
        self.assertTrue(detector.on_tick(2))

    def test_reset_starts_a_new_pair(self) -> None:
        clock = FakeTime(1.0)
        detector = DoubleCopyDetector(0.3, clock.now, initial_counter=0)
        detector.on_tick(1, 1.0)
        detector.reset()
        self.assertFalse(detector.on_tick(2, 1.1))
        self.assertTrue(detector.on_tick(3, 1.2))


class PollingClipboardTests(unittest.TestCase):
    def test_counter_changes_only_when_content_changes(self) -> None:
        contents = iter(["a", "a", "b", "b", "a"])
        clipboard = PollingClipboard(paste=lambda: next(contents))
        self.assertEqual([clipboard.change_counter() for _ in range(5)], [0, 0, 1, 1, 2])

    def test_read_failure_keeps_counter(self) -> None:
        state = {"fail": False, "text": "a"}

        def paste():
            if state["fail"]:
                raise ClipboardError("locked")
            return state["text"]

        clipboard = PollingClipboard(paste=paste)
        clipboard.change_counter()
        state["text"] = "b"
        self.assertEqual(clipboard.change_counter(), 1)
        state["fail"] = True
        self.assertEqual(clipboard.change_counter(), 1)
        state.update(fail=False, text="c")
        self.assertEqual(clipboard.change_counter(), 2)

    def test_current_text_reads_clipboard(self) -> None:
        clipboard = PollingClipboard(paste=lambda: "copied")
        self.assertEqual(clipboard.current_text(), "copied")


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
