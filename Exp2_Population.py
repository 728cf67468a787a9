"""
Exp2_Population.py: 背景规模对 SELECT 开销的影响
==============================================================================
固定目标标签数 n=50，改变总标签数 N (即背景规模 N - n)。背景越大，
唯一子串越长、越稀少，SELECT 命令数与总比特数随之上升。
==============================================================================
"""

import multiprocessing
import numpy as np

from Exp1 import run_experiment


EXPERIMENT = {
    "name": "exp2_population_scalability",
    "description": "固定 n=50, 总标签数 N 变化",
    "varying_param_key": "TOTAL_TAGS",
    "varying_param_values": np.linspace(500, 10000, 20, dtype=int),
    "scenario_config": {
        'TARGET_TAGS': 50,
        'BINARY_LENGTH': 32,
        'id_distribution': 'random',
    },
    "algorithm_specific_config": {
        'enable_resource_monitoring': True,
    }
}


if __name__ == '__main__':
    multiprocessing.freeze_support()
    run_experiment(EXPERIMENT)
