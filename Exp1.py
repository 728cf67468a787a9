"""
Exp1.py: 目标规模对 SELECT 开销的影响
==============================================================================
固定总标签数 N，改变目标标签数 n，比较三种子串长度策略 (Limit=0/1/2)
下 ECTS 的 SELECT 命令数与总比特开销。
==============================================================================
"""

import os
import time
import logging
import multiprocessing
import numpy as np
from tqdm import tqdm

from Framework import run_simulation, InvalidConfigurationError
from Tool import SimulationAnalytics
from algorithm_base_config import ALGORITHM_LIBRARY, ALGORITHMS_TO_TEST


RESULTS_BASE_DIR = "results"


EXPERIMENTS_TO_RUN = [
    {
        "name": "exp1_target_scalability",
        "description": "固定 N=1000, 目标标签数 n 变化",
        "varying_param_key": "TARGET_TAGS",
        "varying_param_values": np.linspace(10, 200, 20, dtype=int),
        "scenario_config": {
            'TOTAL_TAGS': 1000,
            'BINARY_LENGTH': 32,
            'id_distribution': 'random',
        },
        "algorithm_specific_config": {
            'enable_resource_monitoring': True,
        }
    },
]


NUM_RUNS_PER_POINT = 20

logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(message)s', datefmt='%H:%M:%S')


def run_single_task(task_params: tuple):
    """
    执行单次仿真任务, 返回 (result_dict, full_config_log, algo_name, run_id)。
    配置非法的数据点返回 None。
    """
    algo_name, scenario_config, algo_specific_config, run_id = task_params

    algo_info = ALGORITHM_LIBRARY[algo_name]
    algo_class = algo_info["class"]

    final_algo_config = {**algo_info["config"], **algo_specific_config}

    try:
        result_dict = run_simulation(
            scenario_config=scenario_config,
            algorithm_class=algo_class,
            algorithm_specific_config=final_algo_config
        )
    except InvalidConfigurationError as e:
        print(f"跳过 [{algo_name}] {scenario_config}: {e}")
        return None

    full_config_log = {**scenario_config, **algo_specific_config}

    return (result_dict, full_config_log, algo_name, run_id)


def build_tasks(experiment: dict) -> list:
    tasks = []
    varying_key = experiment['varying_param_key']

    for value in experiment['varying_param_values']:
        scenario_conf = experiment['scenario_config'].copy()
        algo_conf = experiment['algorithm_specific_config'].copy()
        if varying_key in ['TOTAL_TAGS', 'TARGET_TAGS', 'BINARY_LENGTH', 'id_distribution']:
            scenario_conf[varying_key] = value.item() if isinstance(value, np.generic) else value
        else:
            algo_conf[varying_key] = value

        for algo_name in ALGORITHMS_TO_TEST:
            for i in range(NUM_RUNS_PER_POINT):
                tasks.append(
                    (algo_name, scenario_conf.copy(), algo_conf.copy(), i))
    return tasks


def run_experiment(experiment: dict):
    exp_name = experiment["name"]
    output_dir = os.path.join(RESULTS_BASE_DIR, exp_name)
    os.makedirs(output_dir, exist_ok=True)
    varying_key = experiment['varying_param_key']

    print("\n" + "="*80)
    print(f"开始执行实验: {exp_name}")
    print(f"描述: {experiment['description']}")
    print(f"对比策略: {', '.join(ALGORITHMS_TO_TEST)}")
    print(f"可变参数: '{varying_key}'")
    print(f"参数范围: {str(experiment['varying_param_values'])}")
    print(f"每个数据点重复运行: {NUM_RUNS_PER_POINT} 次")
    print("="*80)

    tasks = build_tasks(experiment)

    print(f"\n任务总数: {len(tasks)}")
    num_processes = max(1, multiprocessing.cpu_count() - 1)
    print(f"将使用 {num_processes} 个CPU核心并行执行...")

    analytics = SimulationAnalytics()
    start_time = time.time()

    with multiprocessing.Pool(processes=num_processes) as pool:
        results_iterator = pool.imap_unordered(run_single_task, tasks)
        for result_tuple in tqdm(results_iterator, total=len(tasks), desc=f"执行 [{exp_name}]"):
            if result_tuple is not None:
                analytics.add_run_result(*result_tuple)

    end_time = time.time()
    print(f"\n实验 [{exp_name}] 执行完毕。总耗时: {end_time - start_time:.2f} 秒")

    print("\n正在处理和分析数据...")

    analytics.save_to_csv(x_axis_key=varying_key, output_dir=output_dir)
    analytics.plot_results(
        x_axis_key=varying_key,
        algorithm_library=ALGORITHM_LIBRARY,
        save_path=os.path.join(output_dir, f"{exp_name}_plot.png")
    )

    print(f"\n实验 [{exp_name}] 已全部完成。")
    print(f"所有结果已保存至目录: {output_dir}")


def main():
    """遍历并执行 EXPERIMENTS_TO_RUN 中定义的所有实验。"""
    for experiment in EXPERIMENTS_TO_RUN:
        run_experiment(experiment)


if __name__ == '__main__':
    multiprocessing.freeze_support()
    main()
