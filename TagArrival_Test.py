# -*- coding: utf-8 -*-
"""
在线到达聚合器验证: 去重、单次触发、间隔记录与并发安全
"""

import random
import threading
import unittest

from Framework import (
    AnalysisResult,
    DegenerateLogInputError,
    InvalidConfigurationError,
    LIMIT_EXHAUSTIVE,
)
from TagArrival import ArrivalRecord, TagArrivalAggregator, normalize_epc
from TagStream import TagStreamSimulator


def _ids(count, start=0):
    return [format(i, '032b') for i in range(start, start + count)]


class RecordingAnalyzer:
    """记录调用参数的假分析器"""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, needed_tags, total_tags, **kwargs):
        with self._lock:
            self.calls.append((list(needed_tags), total_tags, kwargs))
        return AnalysisResult(query_count=len(needed_tags), total_bits=46 * len(needed_tags))


class CountingStop:

    def __init__(self):
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.count += 1


def _fake_clock(values):
    it = iter(values)
    return lambda: next(it)


class TestAggregatorSequential(unittest.TestCase):

    def setUp(self):
        self.analyzer = RecordingAnalyzer()
        self.stop = CountingStop()
        self.records = []

    def _build(self, n, total=1000, clock=None, **kwargs):
        extra = {'clock': clock} if clock is not None else {}
        return TagArrivalAggregator(target_tags=n, total_tags=total,
                                    stop_source=self.stop, sink=self.records.append,
                                    analyzer=self.analyzer, **extra, **kwargs)

    def test_duplicates_counted_once(self):
        agg = self._build(3)
        agg.start()
        a, b, c = _ids(3)
        self.assertTrue(agg.observe(a).is_new)
        self.assertFalse(agg.observe(a).is_new)
        self.assertTrue(agg.observe(b).is_new)
        self.assertEqual(agg.distinct_count, 2)
        self.assertFalse(agg.is_triggered)
        self.assertEqual(self.analyzer.calls, [])

        outcome = agg.observe(c)
        self.assertTrue(outcome.threshold_reached)
        self.assertEqual(outcome.distinct_count, 3)
        self.assertEqual(len(self.analyzer.calls), 1)
        needed, total, kwargs = self.analyzer.calls[0]
        self.assertEqual(needed, [a, b, c])
        self.assertEqual(total, 1000)
        self.assertEqual(kwargs['limit_mode'], LIMIT_EXHAUSTIVE)
        self.assertEqual(self.stop.count, 1)
        self.assertEqual(agg.wait_for_result(timeout=1.0).query_count, 3)

    def test_sink_receives_one_record_per_new_tag(self):
        agg = self._build(4)
        agg.start()
        tags = _ids(4)
        for tag in [tags[0], tags[0], tags[1], tags[2], tags[1], tags[3]]:
            agg.observe(tag)
        self.assertEqual([r.identifier for r in self.records], tags)
        self.assertEqual([r.distinct_count for r in self.records], [1, 2, 3, 4])

    def test_intervals_follow_clock(self):
        agg = self._build(2, clock=_fake_clock([0.0, 1.0, 1.0005, 1.0015]))
        agg.start()
        a, b = _ids(2)
        agg.observe(a)
        agg.observe(b)
        self.assertAlmostEqual(self.records[0].interval_us, 500.0, places=3)
        self.assertAlmostEqual(self.records[1].interval_us, 1000.0, places=3)
        self.assertAlmostEqual(agg.elapsed_us, 1500.0, places=3)

    def test_interval_offset_subtracted(self):
        agg = self._build(2, clock=_fake_clock([0.0, 1.0, 1.0005]), interval_offset_us=100.0)
        agg.start()
        agg.observe(_ids(1)[0])
        self.assertAlmostEqual(self.records[0].interval_us, 400.0, places=3)

    def test_observe_after_trigger_is_ignored(self):
        agg = self._build(1, clock=_fake_clock([0.0, 1.0, 1.1]))
        agg.start()
        first, second = _ids(2)
        agg.observe(first)
        outcome = agg.observe(second)
        self.assertFalse(outcome.is_new)
        self.assertEqual(agg.distinct_count, 1)
        self.assertEqual(agg.seen_tags, [first])
        self.assertEqual(len(self.analyzer.calls), 1)
        self.assertEqual(self.stop.count, 1)
        self.assertEqual(len(self.records), 1)

    def test_zero_targets_trigger_on_start(self):
        agg = self._build(0)
        agg.start()
        self.assertTrue(agg.is_triggered)
        self.assertEqual(self.analyzer.calls[0][0], [])
        self.assertEqual(self.stop.count, 1)
        agg.start()
        self.assertEqual(len(self.analyzer.calls), 1)

    def test_zero_targets_trigger_on_first_observe(self):
        results = []
        agg = self._build(0, total=50, on_result=results.append)
        outcome = agg.observe('0' * 32)
        agg.observe('1' * 32)
        self.assertFalse(outcome.is_new)
        self.assertTrue(outcome.threshold_reached)
        self.assertEqual(agg.distinct_count, 0)
        self.assertEqual(agg.seen_tags, [])
        self.assertEqual(len(results), 1)
        self.assertEqual(self.analyzer.calls[0][0], [])
        self.assertEqual(len(self.analyzer.calls), 1)
        self.assertEqual(self.stop.count, 1)
        self.assertEqual(self.records, [])

    def test_on_result_callback(self):
        received = []
        agg = self._build(1, on_result=received.append)
        agg.start()
        agg.observe(_ids(1)[0])
        self.assertEqual(len(received), 1)
        self.assertIs(received[0], agg.result)

    def test_analysis_failure_still_stops_source(self):
        def failing(*args, **kwargs):
            raise RuntimeError("boom")

        agg = TagArrivalAggregator(target_tags=1, total_tags=10, stop_source=self.stop,
                                   sink=None, analyzer=failing)
        agg.start()
        with self.assertRaises(RuntimeError):
            agg.observe(_ids(1)[0])
        self.assertEqual(self.stop.count, 1)
        self.assertIsNone(agg.wait_for_result(timeout=0.1))

    def test_malformed_identifier_rejected(self):
        agg = self._build(2)
        with self.assertRaises(InvalidConfigurationError):
            agg.observe('0101')
        self.assertEqual(agg.distinct_count, 0)


class TestAggregatorConfiguration(unittest.TestCase):

    def test_more_targets_than_population(self):
        with self.assertRaises(InvalidConfigurationError):
            TagArrivalAggregator(target_tags=5, total_tags=3, analyzer=RecordingAnalyzer())

    def test_degenerate_information_mode(self):
        with self.assertRaises(DegenerateLogInputError):
            TagArrivalAggregator(target_tags=10, total_tags=11, limit_mode=0,
                                 analyzer=RecordingAnalyzer())

    def test_disabled_ects_skips_length_policy(self):
        agg = TagArrivalAggregator(target_tags=10, total_tags=11, limit_mode=0,
                                   enable_ects=False, analyzer=RecordingAnalyzer())
        self.assertFalse(agg.config.needs_planning)


class TestAggregatorConcurrency(unittest.TestCase):

    def test_concurrent_observers_trigger_once(self):
        analyzer = RecordingAnalyzer()
        stop = CountingStop()
        records = []
        agg = TagArrivalAggregator(target_tags=30, total_tags=1000, stop_source=stop,
                                   sink=records.append, analyzer=analyzer)
        pool = _ids(50)
        barrier = threading.Barrier(8)

        def worker(seed):
            order = list(pool)
            random.Random(seed).shuffle(order)
            barrier.wait()
            for tag in order * 2:
                agg.observe(tag)

        agg.start()
        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(analyzer.calls), 1)
        self.assertEqual(stop.count, 1)
        needed = analyzer.calls[0][0]
        self.assertEqual(len(needed), 30)
        self.assertEqual(len(set(needed)), 30)
        self.assertEqual(agg.seen_tags, needed)
        self.assertEqual([r.distinct_count for r in records], list(range(1, 31)))


class TestReportHandling(unittest.TestCase):

    def test_normalize_hex_epc(self):
        self.assertEqual(normalize_epc('E200 001D 4500 0000 0000 00FF'), '0' * 24 + '1' * 8)
        self.assertEqual(normalize_epc('ff', bit_length=8), '11111111')

    def test_normalize_binary_passthrough(self):
        self.assertEqual(normalize_epc('01' * 16), '01' * 16)

    def test_normalize_empty_rejected(self):
        with self.assertRaises(ValueError):
            normalize_epc('  ')

    def test_normalize_hex_only_reads_binary_looking_epc_as_hex(self):
        epc = '0' * 30 + '10'
        self.assertEqual(normalize_epc(epc), epc)
        self.assertEqual(normalize_epc(epc, hex_only=True), '0' * 27 + '10000')

    def test_report_with_hex_only(self):
        analyzer = RecordingAnalyzer()
        agg = TagArrivalAggregator(target_tags=1, total_tags=100, sink=None, analyzer=analyzer)
        agg.start()
        agg.observe_report(['1' * 32], hex_only=True)
        self.assertEqual(analyzer.calls[0][0], ['0001' * 8])

    def test_report_stops_at_threshold(self):
        analyzer = RecordingAnalyzer()
        agg = TagArrivalAggregator(target_tags=2, total_tags=100, sink=None, analyzer=analyzer)
        agg.start()
        outcomes = agg.observe_report(['01', '01', '02', '03', '04'])
        self.assertEqual(len(outcomes), 3)
        self.assertEqual([o.is_new for o in outcomes], [True, False, True])
        self.assertTrue(outcomes[-1].threshold_reached)
        self.assertEqual(len(analyzer.calls[0][0]), 2)


class TestOnlinePipeline(unittest.TestCase):

    def test_stream_to_analysis(self):
        rng = random.Random(8)
        field_tags = [format(0xE200001D4500000000000000 + s, '024X')
                      for s in rng.sample(range(1 << 32), 80)]
        reader = TagStreamSimulator(field_tags, report_size=10, p_dup=0.5,
                                    report_interval_s=0.0005, seed=3)
        agg = TagArrivalAggregator(target_tags=20, total_tags=1000, limit_mode=LIMIT_EXHAUSTIVE,
                                   stop_source=reader.stop, sink=None, seed=4)

        agg.start()
        reader.start(agg.observe_report)
        result = agg.wait_for_result(timeout=30.0)
        reader.join(timeout=5.0)

        self.assertIsNotNone(result)
        self.assertTrue(reader.is_stopped)
        self.assertEqual(agg.distinct_count, 20)
        covered = sum(len(q.covered) for q in result.queries)
        self.assertEqual(covered + result.unresolved_count, 20)
        self.assertEqual(result.total_bits,
                         sum(q.length for q in result.queries) + 45 * result.query_count)

    def test_simulator_report_shape(self):
        reader = TagStreamSimulator(_ids(5), report_size=3, p_dup=0.0, seed=1)
        report = reader.next_report()
        self.assertEqual(len(report), 3)
        self.assertEqual(len(set(report)), 3)
        self.assertTrue(set(report) <= set(_ids(5)))

    def test_simulator_respects_max_reports(self):
        reports = []
        reader = TagStreamSimulator(_ids(5), report_size=2, report_interval_s=0.0,
                                    seed=1, max_reports=4)
        reader.start(reports.append)
        reader.join(timeout=5.0)
        self.assertEqual(len(reports), 4)
        self.assertEqual(reader.reports_sent, 4)
        with self.assertRaises(RuntimeError):
            reader.start(reports.append)


if __name__ == '__main__':
    unittest.main()
