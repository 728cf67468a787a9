import os
import math
from typing import Dict, List, Any, Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt


plt.style.use('seaborn-v0_8-whitegrid')

# (列名, 图标题, 纵轴标签, 是否绘图)
KPI_TABLE = [
    ('select_commands', 'SELECT Commands', 'Commands', True),
    ('total_select_bits', 'Total SELECT Bits', 'Bits', True),
    ('avg_bits_per_query', 'Avg Bits per Query', 'Bits / Query', True),
    ('avg_bits_per_target', 'Avg Bits per Target', 'Bits / Tag', True),
    ('resolution_rate', 'Resolution Rate', 'Ratio', True),
    ('total_protocol_time_ms', 'Total Time (ms)', 'Time (ms)', True),
    ('unresolved_tags', 'Unresolved Tags', 'Tags', False),
    ('candidate_count', 'Candidate Discriminators', 'Candidates', False),
    ('peak_remaining_candidates', 'Peak Remaining Candidates', 'Candidates', False),
]


class SimulationAnalytics:
    """收集多次 run_simulation 的结果, 输出按算法透视的 CSV 与对比图。"""

    def __init__(self):
        self.runs: List[Dict[str, Any]] = []

    def add_run_result(self, result_dict: Dict[str, Any], scenario_config: Dict, algorithm_name: str, run_id: int):
        row = {**scenario_config, **result_dict,
               'algorithm_name': algorithm_name, 'run_id': run_id}
        # peak_metrics 展开为 peak_xxx 列
        peaks = row.pop('peak_metrics', None)
        if isinstance(peaks, dict):
            row.update({f"peak_{k}": v for k, v in peaks.items()})
        self.runs.append(row)

    def get_results_dataframe(self) -> pd.DataFrame:
        if not self.runs:
            return pd.DataFrame()
        return pd.DataFrame(self.runs)

    def _calculate_derived_metrics(self, df: pd.DataFrame) -> pd.DataFrame:
        """补充平均比特、解析率与毫秒时间列; 分母为 0 的行取约定值。"""
        cols = df.columns
        if 'total_select_bits' in cols and 'select_commands' in cols:
            commands = df['select_commands']
            df['avg_bits_per_query'] = np.where(
                commands > 0, df['total_select_bits'] / commands.clip(lower=1), 0.0)

        if 'TARGET_TAGS' in cols:
            targets = df['TARGET_TAGS']
            if 'total_select_bits' in cols:
                df['avg_bits_per_target'] = np.where(
                    targets > 0, df['total_select_bits'] / targets.clip(lower=1), 0.0)
            if 'unresolved_tags' in cols:
                df['resolution_rate'] = np.where(
                    targets > 0, 1.0 - df['unresolved_tags'] / targets.clip(lower=1), 1.0)

        if 'total_protocol_time_us' in cols:
            df['total_protocol_time_ms'] = df['total_protocol_time_us'] / 1000.0
        return df

    def _prepared(self) -> Optional[pd.DataFrame]:
        df = self.get_results_dataframe()
        if df.empty:
            return None
        return self._calculate_derived_metrics(df)

    def save_to_csv(self, x_axis_key: str = 'TARGET_TAGS', output_dir: str = "simulation_results"):
        """每个 KPI 一个 CSV: 行为 x_axis_key 取值, 列为算法, 值为多次运行的均值。"""
        df = self._prepared()
        if df is None:
            print("警告: 没有仿真结果可供保存。")
            return

        os.makedirs(output_dir, exist_ok=True)
        print(f"\n保存 KPI 表到 '{output_dir}' ...")
        for key, _title, _ylabel, _plotted in KPI_TABLE:
            if key not in df.columns:
                continue
            table = df.pivot_table(index=x_axis_key, columns='algorithm_name',
                                   values=key, aggfunc='mean')
            path = os.path.join(output_dir, f"{key}.csv")
            table.reset_index().to_csv(path, index=False, float_format='%.4f')
            print(f" -> {path}")

    def plot_results(self, x_axis_key: str = 'TARGET_TAGS', algorithm_library: Dict = None, save_path: str = None,
                     show: bool = True):
        """均值折线 + 标准差误差棒, 每个 KPI 一个子图。"""
        df = self._prepared()
        if df is None:
            print("警告: 没有仿真结果可供绘图。")
            return

        panels = [(key, title, ylabel) for key, title, ylabel, plotted in KPI_TABLE
                  if plotted and key in df.columns]
        ncols = 3
        nrows = max(1, math.ceil(len(panels) / ncols))
        fig, axes = plt.subplots(nrows=nrows, ncols=ncols, figsize=(24, 7 * nrows))
        axes = np.atleast_1d(axes).ravel()
        algorithm_library = algorithm_library or {}

        for ax, (key, title, ylabel) in zip(axes, panels):
            stats = df.groupby(['algorithm_name', x_axis_key])[key].agg(['mean', 'std'])
            for algo_name in sorted(df['algorithm_name'].unique()):
                series = stats.loc[algo_name]
                info = algorithm_library.get(algo_name, {})
                style = {'marker': 'o', 'linewidth': 2.0, 'capsize': 3, **info.get("style", {})}
                ax.errorbar(series.index, series['mean'], yerr=series['std'].fillna(0.0),
                            label=info.get("label", algo_name), **style)
            ax.set_title(title, fontsize=18, fontweight='bold')
            ax.set_xlabel(x_axis_key.replace('_', ' ').title(), fontsize=14)
            ax.set_ylabel(ylabel, fontsize=14)
            ax.legend(fontsize=11, loc='best')

        for ax in axes[len(panels):]:
            fig.delaxes(ax)
        fig.tight_layout()

        if save_path:
            fig.savefig(save_path, dpi=300, bbox_inches='tight')
            print(f"\n图表已保存到 {save_path}")
        if show:
            plt.show()
        plt.close(fig)


class RfidUtils:
    @staticmethod
    def substring_exists(needed_substring: str, tag_ids: List[str], start: int, end: int) -> bool:
        """逐个比较: 是否有标签在 [start, end) 上与 needed_substring 相同。"""
        return any(len(tid) >= end and tid[start:end] == needed_substring for tid in tag_ids)
