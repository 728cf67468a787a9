"""
TagArrival.py
在线标签到达聚合器

读写器回调线程逐个上报标签; 聚合器去重计数, 记录相邻两个新标签之间的间隔,
并在恰好收集到 n 个不同标签时触发一次 ECTS 分析, 随后通知数据源停止上报。
所有共享状态只在同一把锁内修改, 保证每个标签至多计数一次、分析只触发一次。
"""

import logging
import threading
import time
from typing import Callable, Iterable, List, NamedTuple, Optional

from Framework import (
    AnalysisConfig,
    AnalysisResult,
    CONSTANTS,
    LIMIT_EXHAUSTIVE,
    validate_identifiers,
)
from ECTS import analyze_tags

logger = logging.getLogger(__name__)


class ArrivalRecord(NamedTuple):
    identifier: str
    distinct_count: int
    interval_us: float


class ObservationOutcome(NamedTuple):
    is_new: bool
    distinct_count: int
    interval_us: Optional[float] = None
    threshold_reached: bool = False


def normalize_epc(raw_epc: str, bit_length: int = CONSTANTS.BIT_LENGTH,
                  hex_only: bool = False) -> str:
    """
    将读写器上报的 EPC 规范化为 bit_length 位二进制串。
    已是二进制串的直接返回; 否则去掉空格按十六进制解析, 取低 bit_length 位。

    注意: 恰为 bit_length 个字符且只含 0/1 的输入按二进制处理, 即使它本是
    十六进制 EPC。读写器上报固定为十六进制时传 hex_only=True。
    """
    compact = raw_epc.replace(" ", "").strip()
    if not compact:
        raise ValueError("空 EPC")
    if not hex_only and len(compact) == bit_length and set(compact) <= {'0', '1'}:
        return compact
    value = int(compact, 16)
    return format(value & ((1 << bit_length) - 1), f'0{bit_length}b')


def log_arrival(record: ArrivalRecord):
    logger.info("%s %d %.1f", record.identifier, record.distinct_count, record.interval_us)


class TagArrivalAggregator:
    """
    Args:
        target_tags: 需要收集的不同标签数 n
        total_tags: 假定的总标签数 N
        on_result: 分析完成后的回调, 参数为 AnalysisResult
        stop_source: 通知外部数据源停止上报, 只调用一次
        sink: 每个新标签的 (标签, 计数, 间隔us) 记录去向
        clock: 返回秒的单调时钟
        interval_offset_us: 从间隔中扣除的固定补偿量
        analyzer: 分析函数, 签名同 ECTS.analyze_tags
        **analysis_kwargs: 透传给 analyzer 的其余参数 (background_tags, seed ...)
    """

    def __init__(self, target_tags: int, total_tags: int,
                 limit_mode: int = LIMIT_EXHAUSTIVE,
                 enable_ects: bool = True,
                 on_result: Optional[Callable[[AnalysisResult], None]] = None,
                 stop_source: Optional[Callable[[], None]] = None,
                 sink: Optional[Callable[[ArrivalRecord], None]] = log_arrival,
                 clock: Callable[[], float] = time.perf_counter,
                 interval_offset_us: float = 0.0,
                 analyzer: Callable[..., AnalysisResult] = analyze_tags,
                 **analysis_kwargs):
        self.config = AnalysisConfig(
            total_tags=total_tags,
            target_tags=target_tags,
            limit_mode=limit_mode,
            enable_ects=bool(enable_ects),
            query_overhead_bits=analysis_kwargs.get('query_overhead_bits', CONSTANTS.SELECT_OVERHEAD_BITS),
            bit_length=analysis_kwargs.get('bit_length', CONSTANTS.BIT_LENGTH),
        )
        self.config.validate()
        if self.config.needs_planning:
            self.config.length_range()

        self.on_result = on_result
        self.stop_source = stop_source
        self.sink = sink
        self.clock = clock
        self.interval_offset_us = interval_offset_us
        self.analyzer = analyzer
        self.analysis_kwargs = analysis_kwargs

        self._lock = threading.Lock()
        self._seen = set()
        self._arrival_order: List[str] = []
        self._distinct_count = 0
        self._start_time = clock()
        self._last_time = self._start_time
        self._triggered = False
        self._done = threading.Event()

        self.result: Optional[AnalysisResult] = None
        self.elapsed_us: Optional[float] = None

    @property
    def target_tags(self) -> int:
        return self.config.target_tags

    @property
    def distinct_count(self) -> int:
        with self._lock:
            return self._distinct_count

    @property
    def seen_tags(self) -> List[str]:
        with self._lock:
            return list(self._arrival_order)

    @property
    def is_triggered(self) -> bool:
        with self._lock:
            return self._triggered

    def start(self):
        """标记计时起点 (读写器开始上报)。n == 0 时立即完成分析。"""
        with self._lock:
            self._start_time = self.clock()
            self._last_time = self._start_time
            fire = self.config.target_tags == 0 and not self._triggered
            if fire:
                self._triggered = True
        if fire:
            self._run_analysis([])

    def observe(self, identifier: str) -> ObservationOutcome:
        validate_identifiers([identifier], self.config.bit_length)
        snapshot = None
        with self._lock:
            if self._triggered or identifier in self._seen:
                return ObservationOutcome(False, self._distinct_count)

            now = self.clock()
            if self.config.target_tags == 0:
                # 未调用 start() 时 n == 0 在首次上报触发, 该标签不计数
                self._triggered = True
                self.elapsed_us = (now - self._start_time) * 1e6
                snapshot = []
                outcome = ObservationOutcome(False, 0, None, True)
            else:
                self._seen.add(identifier)
                self._arrival_order.append(identifier)
                self._distinct_count += 1

                interval_us = (now - self._last_time) * 1e6 - self.interval_offset_us
                self._last_time = now

                if self.sink is not None:
                    self.sink(ArrivalRecord(identifier, self._distinct_count, interval_us))

                threshold_reached = self._distinct_count == self.config.target_tags
                if threshold_reached:
                    self._triggered = True
                    self.elapsed_us = (now - self._start_time) * 1e6
                    snapshot = list(self._arrival_order)
                outcome = ObservationOutcome(True, self._distinct_count, interval_us, threshold_reached)

        if snapshot is not None:
            self._run_analysis(snapshot)
        return outcome

    def observe_report(self, raw_epcs: Iterable[str], hex_only: bool = False) -> List[ObservationOutcome]:
        """处理一次读写器上报; 触发分析后忽略本次上报的剩余标签。"""
        outcomes = []
        for raw in raw_epcs:
            outcome = self.observe(normalize_epc(raw, self.config.bit_length, hex_only))
            outcomes.append(outcome)
            if outcome.threshold_reached:
                break
        return outcomes

    def wait_for_result(self, timeout: Optional[float] = None) -> Optional[AnalysisResult]:
        self._done.wait(timeout)
        return self.result

    def _run_analysis(self, needed_tags: List[str]):
        try:
            result = self.analyzer(needed_tags, self.config.total_tags,
                                   limit_mode=self.config.limit_mode,
                                   enable_ects=self.config.enable_ects,
                                   **self.analysis_kwargs)
            self.result = result
            logger.info("ECTS命令数: %d 总比特数: %d (未解析 %d)",
                        result.query_count, result.total_bits, result.unresolved_count)
            if self.on_result is not None:
                self.on_result(result)
        finally:
            self._done.set()
            if self.stop_source is not None:
                self.stop_source()
