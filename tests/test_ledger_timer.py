import threading
import unittest
from datetime import timedelta

from twophase.engine.ledger import LedgerError, ResponseLedger
from twophase.engine.timer import IntervalTicker, ManualClock, SessionTimer

from tests.mocks.records import BASE_TIME, make_response


class ResponseLedgerTests(unittest.TestCase):
    def test_one_record_per_key(self) -> None:
        ledger = ResponseLedger()
        ledger.record_answer(make_response("s-1", "q-1", "a"))
        with self.assertRaises(LedgerError):
            ledger.record_answer(make_response("s-1", "q-1", "b"))
        ledger.record_answer(make_response("s-1", "q-1", "b", assessment_id="quiz-2"))
        self.assertEqual(len(ledger), 2)

    def test_retake_is_a_separate_attempt(self) -> None:
        ledger = ResponseLedger([make_response("s-1", "q-1", "a", "r1", attempt_id="attempt-1")])
        retake = ledger.record_answer(make_response("s-1", "q-1", "b", attempt_id="attempt-2"))
        self.assertEqual(retake.key, ("s-1", "quiz-1", "q-1", "attempt-2"))
        self.assertEqual(len(ledger), 2)
        self.assertEqual([record.answer_id for record in ledger.for_attempt("s-1", "quiz-1", "attempt-2")], ["b"])
        self.assertEqual(len(ledger.for_attempt("s-1", "quiz-1")), 2)

    def test_rejects_prebuilt_rationalized_records(self) -> None:
        ledger = ResponseLedger()
        with self.assertRaises(LedgerError):
            ledger.record_answer(make_response("s-1", "q-1", "a", "r1"))

    def test_rationale_attaches_exactly_once(self) -> None:
        ledger = ResponseLedger()
        record = ledger.record_answer(make_response("s-1", "q-1", "a"))
        updated = ledger.attach_rationale(record.key, "r2", BASE_TIME + timedelta(seconds=50), 20)
        self.assertEqual(updated.rationale_id, "r2")
        self.assertEqual(ledger.get(record.key), updated)
        with self.assertRaises(LedgerError):
            ledger.attach_rationale(record.key, "r1", BASE_TIME, 1)
        with self.assertRaises(LedgerError):
            ledger.attach_rationale(("s-1", "quiz-1", "q-9", None), "r1", BASE_TIME, 1)

    def test_flag_and_filters(self) -> None:
        ledger = ResponseLedger(
            [
                make_response("s-1", "q-1", "a"),
                make_response("s-2", "q-1", "b"),
                make_response("s-1", "q-2", "c", assessment_id="exam-1"),
            ]
        )
        flagged = ledger.mark_flagged(("s-2", "quiz-1", "q-1", None))
        self.assertTrue(flagged.flagged_for_review)
        self.assertEqual(len(ledger.for_student("s-1")), 2)
        self.assertEqual([record.question_id for record in ledger.for_attempt("s-1", "exam-1")], ["q-2"])
        self.assertIsInstance(ledger.snapshot(), tuple)
        with self.assertRaises(LedgerError):
            ledger.mark_flagged(("s-3", "quiz-1", "q-1", None))


class TimerTests(unittest.TestCase):
    def test_manual_clock_advances_only_on_request(self) -> None:
        clock = ManualClock()
        start = clock.now()
        self.assertEqual(clock.now(), start)
        self.assertEqual(clock.advance(1.5) - start, timedelta(seconds=1.5))

    def test_timer_floors_remaining_and_stops_after_cancel(self) -> None:
        timer = SessionTimer(2)
        for _ in range(3):
            self.assertTrue(timer.tick())
        self.assertEqual((timer.elapsed, timer.remaining), (3, 0))
        self.assertTrue(timer.expired)

        timer.cancel()
        self.assertFalse(timer.tick())
        self.assertEqual(timer.elapsed, 3)

    def test_interval_ticker_stops_when_callback_reports_inactive(self) -> None:
        calls = []
        done = threading.Event()

        def callback() -> bool:
            calls.append(1)
            if len(calls) >= 3:
                done.set()
                return False
            return True

        ticker = IntervalTicker(callback, interval=0.01)
        ticker.start()
        self.assertTrue(done.wait(2.0))
        ticker.stop(timeout=2.0)
        self.assertFalse(ticker.running)
        self.assertEqual(len(calls), 3)

    def test_interval_ticker_context_manager(self) -> None:
        ticks = threading.Event()
        with IntervalTicker(lambda: ticks.set() or True, interval=0.01) as ticker:
            self.assertTrue(ticks.wait(2.0))
            self.assertTrue(ticker.running)
        self.assertFalse(ticker.running)


if __name__ == "__main__":
    unittest.main()
