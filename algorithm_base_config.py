# -*- coding: utf-8 -*-

# 1. 导入所有需要配置的算法实现类
from ECTS import ECTS_Algorithm
from Framework import LIMIT_INFORMATION, LIMIT_EXHAUSTIVE, LIMIT_COLLISION_BOUND

# 2. 全局绘图样式库 (Plot Style Palette)
PLOT_STYLE_PALETTE = [

    # Style 0: 信息论界 (主)
    {"color": "purple", "linestyle": "-", "marker": "*", "linewidth": 2.5, "markersize": 10, "zorder": 10},
    # Style 1: 穷举
    {"color": "deeppink", "linestyle": "--", "marker": "p", "linewidth": 2.0},
    # Style 2: 碰撞下界
    {"color": "red", "linestyle": "-", "marker": "o"},
    # Style 3: 关闭 ECTS (基线)
    {"color": "gray", "linestyle": "--", "marker": "."},
]

# 3. 算法库 (ALGORITHM_LIBRARY)
#    每个条目通过 "style_id" 引用 PLOT_STYLE_PALETTE 中的样式。
ALGORITHMS_TO_TEST = [
    'ECTS(Limit=0)',
    'ECTS(Limit=1)',
    'ECTS(Limit=2)',
]

ALGORITHM_LIBRARY = {
    'ECTS(Limit=0)': {
        "class": ECTS_Algorithm,
        "config": {'limit_mode': LIMIT_INFORMATION, 'enable_ects': 1},
        "style_id": 0,
        "label": "ECTS (Limit=0)",
    },
    'ECTS(Limit=1)': {  # 最完整, 也最慢
        "class": ECTS_Algorithm,
        "config": {'limit_mode': LIMIT_EXHAUSTIVE, 'enable_ects': 1},
        "style_id": 1,
        "label": "ECTS (Limit=1)",
    },
    'ECTS(Limit=2)': {
        "class": ECTS_Algorithm,
        "config": {'limit_mode': LIMIT_COLLISION_BOUND, 'enable_ects': 1},
        "style_id": 2,
        "label": "ECTS (Limit=2)",
    },
    'ECTS_Off': {
        "class": ECTS_Algorithm,
        "config": {'limit_mode': LIMIT_EXHAUSTIVE, 'enable_ects': 0},
        "style_id": 3,
        "label": "No ECTS",
    },
}

for _name, _info in ALGORITHM_LIBRARY.items():
    _info["style"] = PLOT_STYLE_PALETTE[_info["style_id"] % len(PLOT_STYLE_PALETTE)]
