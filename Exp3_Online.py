"""
Exp3_Online.py: 在线识别实验
==============================================================================
模拟读写器持续上报 (含重复读)，聚合器在收集到 n=100 个不同标签时
以 N=1000、Limit=1 执行一次 ECTS 分析，随后停止读写器。
到达记录 "EPC 计数 间隔(us)" 与最终结果写入 results/exp3_online/results.dat。
==============================================================================
"""

import os
import random
import logging

from Framework import LIMIT_EXHAUSTIVE
from TagArrival import TagArrivalAggregator
from TagStream import TagStreamSimulator


RESULTS_BASE_DIR = "results"
EXPERIMENT_NAME = "exp3_online"
OUTPUT_DIR = os.path.join(RESULTS_BASE_DIR, EXPERIMENT_NAME)

TOTAL_TAGS = 1000
TARGET_TAGS = 100
TAGS_IN_RANGE = 300
BASE_EPC = 0xE200001D4500000000000000


def build_field(num_tags: int, seed: int = 2024) -> list:
    rng = random.Random(seed)
    serials = rng.sample(range(1 << 32), num_tags)
    return [format(BASE_EPC + s, '024X') for s in serials]


def main():
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(message)s', datefmt='%H:%M:%S')

    data_handler = logging.FileHandler(os.path.join(OUTPUT_DIR, "results.dat"), mode='w', encoding='utf-8')
    data_handler.setFormatter(logging.Formatter('%(message)s'))
    logging.getLogger('TagArrival').addHandler(data_handler)

    reader = TagStreamSimulator(build_field(TAGS_IN_RANGE), report_size=16, p_dup=0.4,
                                report_interval_s=0.002, seed=7)
    aggregator = TagArrivalAggregator(
        target_tags=TARGET_TAGS,
        total_tags=TOTAL_TAGS,
        limit_mode=LIMIT_EXHAUSTIVE,
        enable_ects=True,
        stop_source=reader.stop,
    )

    print("="*80)
    print(f"在线实验: N={TOTAL_TAGS}, n={TARGET_TAGS}, 在场标签 {TAGS_IN_RANGE}")
    print("="*80)

    aggregator.start()
    reader.start(aggregator.observe_report)
    result = aggregator.wait_for_result(timeout=60.0)
    reader.stop()
    reader.join(timeout=5.0)
    data_handler.close()

    if result is None:
        print("超时: 未收集到足够的不同标签。")
        return

    print(f"ECTS命令数: {result.query_count}")
    print(f"总比特数: {result.total_bits}")
    print(f"未解析标签: {result.unresolved_count}")
    print(f"读写器上报次数: {reader.reports_sent}, 收集耗时: {aggregator.elapsed_us / 1000.0:.1f} ms")


if __name__ == '__main__':
    main()
