import logging
import random
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class TagStreamSimulator:
    """
    模拟读写器的上报线程: 每隔 report_interval_s 从在场标签中随机抽取一批上报,
    每个标签以 p_dup 的概率被重复读到。stop() 之后不再产生新的上报。
    """

    def __init__(self, tags_in_range: List[str], report_size: int = 8, p_dup: float = 0.3,
                 report_interval_s: float = 0.001, seed: Optional[int] = None,
                 max_reports: int = 0):
        self.tags_in_range = list(tags_in_range)
        self.report_size = report_size
        self.p_dup = p_dup
        self.report_interval_s = report_interval_s
        self.max_reports = max_reports
        self.rng = random.Random(seed)

        self.reports_sent = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def next_report(self) -> List[str]:
        k = min(self.report_size, len(self.tags_in_range))
        report = []
        for epc in self.rng.sample(self.tags_in_range, k):
            report.append(epc)
            if self.rng.random() < self.p_dup:
                report.append(epc)
        self.rng.shuffle(report)
        return report

    def _run(self, on_report: Callable[[List[str]], None]):
        while not self._stop_event.is_set():
            if self.max_reports and self.reports_sent >= self.max_reports:
                logger.info("达到最大上报次数 %d, 停止", self.max_reports)
                break
            on_report(self.next_report())
            self.reports_sent += 1
            self._stop_event.wait(self.report_interval_s)

    def start(self, on_report: Callable[[List[str]], None]):
        if self._thread is not None:
            raise RuntimeError("上报线程已启动")
        self._thread = threading.Thread(target=self._run, args=(on_report,),
                                        name="TagStreamSimulator", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)
