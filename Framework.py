"""
ECTS 仿真框架核心
为 "少量目标标签 + 大量背景标签" 场景下的 SELECT 查询开销评估提供公共设施。
1.  **常量层**:
    - `SimulationConstants` 保存标签位宽、SELECT 协议开销以及 EPC C1G2 时序常量。

2.  **配置层**:
    - `AnalysisConfig` 将场景字典与算法字典合并为经过校验的配置 (fail fast)。
    - `resolve_length_range` 根据 Limit 模式给出子串长度范围 [L_min, L_max]。

3.  **场景与开销**:
    - 背景标签生成 (允许重复) 与目标标签生成 (保留 'dispersed' 等 ID 分布模式)。
    - 查询序列的比特开销与下行时间估计。
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationConstants:
    """标签位宽、SELECT 开销与 EPC C1G2 时序常量。"""
    TARI_US: float = 12.5

    @property
    def RTCAL_US(self) -> float:
        return 2.5 * self.TARI_US

    @property
    def READER_TO_TAG_BPS(self) -> float:
        return 1.0 / (self.TARI_US * 1e-6)

    @property
    def T1_US(self) -> float:
        return max(self.RTCAL_US, 10.0)

    BIT_LENGTH: int = 32
    SELECT_OVERHEAD_BITS: int = 45

    @property
    def READER_BITS_PER_US(self) -> float:
        return self.READER_TO_TAG_BPS / 1.0e6


CONSTANTS = SimulationConstants()

LIMIT_INFORMATION = 0
LIMIT_EXHAUSTIVE = 1
LIMIT_COLLISION_BOUND = 2


class InvalidConfigurationError(ValueError):
    """配置非法 (n > N, 位宽非正, L_min > L_max, 标签格式错误等)。"""


class DegenerateLogInputError(InvalidConfigurationError):
    """Limit=0 时 N - n <= 1，对数公式无定义。"""


class Tag:
    """代表一个RFID标签的简单类。"""

    def __init__(self, identity_code: str):
        self.id: str = identity_code

    def __repr__(self):
        return f"Tag({self.id})"


@dataclass
class AlgorithmStepResult:
    """封装了算法单步执行后产生的结果。"""
    operation_type: str
    reader_bits: float = 0.0
    tag_bits: float = 0.0
    operation_description: str = ''
    internal_metrics: Optional[Dict] = field(default_factory=dict)


@dataclass(frozen=True)
class SelectQuery:
    """一次广播 SELECT: 窗口 [start, end) 上的子串及其本轮覆盖的目标序号。"""
    substring: str
    start: int
    end: int
    covered: FrozenSet[int]

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass
class AnalysisResult:
    """单次分析结果。state 取值: DONE / EXHAUSTED / DISABLED。"""
    query_count: int = 0
    total_bits: int = 0
    unresolved_count: int = 0
    queries: List[SelectQuery] = field(default_factory=list)
    unresolved_tags: List[str] = field(default_factory=list)
    state: str = 'DONE'
    length_range: Optional[Tuple[int, int]] = None
    candidate_count: int = 0

    def as_tuple(self) -> Tuple[int, int]:
        return self.query_count, self.total_bits

    @property
    def is_partial(self) -> bool:
        return self.unresolved_count > 0


def resolve_length_range(total_tags: int, target_tags: int, limit_mode: int,
                         bit_length: int = CONSTANTS.BIT_LENGTH) -> Tuple[int, int]:
    """
    根据 Limit 模式计算子串长度范围。

    - 0: 信息论界, 以背景规模 N - n 估计最短/近乎必然可区分的长度
    - 1: 穷举 [1, BIT_LENGTH]
    - 2: 生日碰撞下界 ceil(log2(n^2))
    其余取值按模式 1 处理。结果截断到 [1, BIT_LENGTH]。
    """
    if limit_mode == LIMIT_INFORMATION:
        background = total_tags - target_tags
        if background <= 1:
            raise DegenerateLogInputError(
                f"Limit=0 需要 N - n > 1, 当前 N - n = {background}")
        ln_bg = math.log(background)
        l_min = math.floor(ln_bg - math.log(ln_bg))
        l_max = math.ceil(math.log2(background * ln_bg))
    elif limit_mode == LIMIT_COLLISION_BOUND:
        l_min = math.ceil(math.log2(target_tags * target_tags)) if target_tags > 1 else 1
        l_max = bit_length
    else:
        l_min, l_max = 1, bit_length

    l_min = max(1, l_min)
    l_max = min(bit_length, l_max)
    if l_min > l_max:
        raise InvalidConfigurationError(
            f"子串长度范围为空: L_min={l_min} > L_max={l_max} (Limit={limit_mode})")
    return l_min, l_max


@dataclass
class AnalysisConfig:
    total_tags: int = 1000
    target_tags: int = 100
    limit_mode: int = LIMIT_INFORMATION
    enable_ects: bool = True
    query_overhead_bits: int = CONSTANTS.SELECT_OVERHEAD_BITS
    bit_length: int = CONSTANTS.BIT_LENGTH

    @classmethod
    def from_configs(cls, scenario_config: Dict, algorithm_specific_config: Dict) -> 'AnalysisConfig':
        return cls(
            total_tags=scenario_config.get('TOTAL_TAGS', 1000),
            target_tags=scenario_config.get('TARGET_TAGS', 100),
            limit_mode=algorithm_specific_config.get('limit_mode', LIMIT_INFORMATION),
            enable_ects=bool(algorithm_specific_config.get('enable_ects', True)),
            query_overhead_bits=algorithm_specific_config.get(
                'query_overhead_bits', CONSTANTS.SELECT_OVERHEAD_BITS),
            bit_length=scenario_config.get('BINARY_LENGTH', CONSTANTS.BIT_LENGTH),
        )

    def validate(self) -> None:
        if self.bit_length <= 0:
            raise InvalidConfigurationError(f"BIT_LENGTH 必须为正, 当前 {self.bit_length}")
        if self.target_tags < 0 or self.total_tags < 0:
            raise InvalidConfigurationError(
                f"标签数量不能为负: N={self.total_tags}, n={self.target_tags}")
        if self.target_tags > self.total_tags:
            raise InvalidConfigurationError(
                f"目标数量 n={self.target_tags} 超过总数 N={self.total_tags}")
        if self.query_overhead_bits < 0:
            raise InvalidConfigurationError(
                f"SELECT 开销不能为负, 当前 {self.query_overhead_bits}")

    @property
    def background_size(self) -> int:
        return self.total_tags - self.target_tags

    @property
    def needs_planning(self) -> bool:
        return self.enable_ects and self.target_tags > 0

    def length_range(self) -> Tuple[int, int]:
        return resolve_length_range(self.total_tags, self.target_tags,
                                    self.limit_mode, self.bit_length)


def validate_identifiers(tag_ids: Sequence[str], bit_length: int) -> None:
    for tag_id in tag_ids:
        if len(tag_id) != bit_length or set(tag_id) - {'0', '1'}:
            raise InvalidConfigurationError(
                f"标签 '{tag_id}' 不是 {bit_length} 位二进制串")


class SelectAlgorithmInterface:
    def __init__(self, tags_in_field: List[Tag], background_tags: List[str], **kwargs):
        self.tags_in_field = tags_in_field
        self.background_tags = background_tags
        self.identified_tags: set = set()
        self.metrics = {'select_commands': 0, 'select_payload_bits': 0}

    def perform_step(self) -> AlgorithmStepResult:
        raise NotImplementedError

    def is_finished(self) -> bool:
        raise NotImplementedError

    def get_results(self) -> set:
        return self.identified_tags

    def get_analysis_result(self) -> AnalysisResult:
        raise NotImplementedError


def generate_binary_strings(count: int, length: int,
                            rng: Optional[random.Random] = None) -> List[str]:
    """生成 count 个独立均匀的 length 位二进制串, 允许重复。"""
    if count < 0 or length <= 0:
        raise InvalidConfigurationError(f"非法的生成参数: count={count}, length={length}")
    rng = rng or random
    return [format(rng.getrandbits(length), f'0{length}b') for _ in range(count)]


def generate_scenario(scenario_config: Dict, rng: Optional[random.Random] = None) -> List[Tag]:
    """生成目标标签集合 (互不相同), 支持多种ID分布模式。"""
    rng = rng or random
    target_tags = scenario_config.get('TARGET_TAGS', 100)
    binary_length = scenario_config.get('BINARY_LENGTH', CONSTANTS.BIT_LENGTH)
    distribution_mode = scenario_config.get('id_distribution', 'random')

    if target_tags > 2 ** binary_length:
        raise InvalidConfigurationError(
            f"{binary_length} 位无法容纳 {target_tags} 个不同的目标标签")

    id_list: List[str] = []
    id_set = set()

    def _add(tag_id: str):
        if tag_id not in id_set:
            id_set.add(tag_id)
            id_list.append(tag_id)

    if distribution_mode == 'sequential':
        for i in range(target_tags):
            _add(format(i, f'0{binary_length}b'))
    elif distribution_mode == 'prefixed':
        prefix_len = scenario_config.get('prefix_length', binary_length // 2)
        if target_tags > 2 ** (binary_length - prefix_len):
            raise InvalidConfigurationError(
                f"前缀 {prefix_len} 位后剩余空间不足以容纳 {target_tags} 个标签")
        prefix = ''.join(rng.choice('01') for _ in range(prefix_len))
        while len(id_list) < target_tags:
            suffix = ''.join(rng.choice('01')
                             for _ in range(binary_length - prefix_len))
            _add(prefix + suffix)
    elif distribution_mode == 'dispersed':
        if target_tags > 1:
            required_positions = math.ceil(math.log2(target_tags)) + 2
        else:
            required_positions = 1
        base_id = ['0'] * binary_length
        start_pos = binary_length // 2
        possible_positions = list(range(start_pos, binary_length))
        num_positions_to_use = min(required_positions, len(possible_positions))
        if target_tags > 2 ** num_positions_to_use:
            raise InvalidConfigurationError(
                f"'dispersed' 模式下 {binary_length} 位无法容纳 {target_tags} 个标签")
        collision_indices = rng.sample(
            possible_positions, num_positions_to_use)
        while len(id_list) < target_tags:
            new_id_list = list(base_id)
            for index in collision_indices:
                new_id_list[index] = rng.choice('01')
            _add("".join(new_id_list))
    else:
        while len(id_list) < target_tags:
            _add(format(rng.getrandbits(binary_length), f'0{binary_length}b'))

    return [Tag(identity_code=tag_id) for tag_id in id_list]


def calculate_total_bits(queries: Sequence[SelectQuery],
                         overhead_bits: int = CONSTANTS.SELECT_OVERHEAD_BITS) -> int:
    """SELECT 序列总比特数 = 各子串长度之和 + 查询数 * 单次协议开销。"""
    return sum(q.length for q in queries) + len(queries) * overhead_bits


def calculate_time_delta(step_result: AlgorithmStepResult) -> float:
    """计算单步操作的下行时间开销 (us)。SELECT 之后需等待 T1。"""
    if step_result.operation_type != 'select_cmd':
        return 0.0
    time_reader_tx = step_result.reader_bits / CONSTANTS.READER_BITS_PER_US
    return time_reader_tx + CONSTANTS.T1_US


def execute_algorithm(algo_instance: SelectAlgorithmInterface, max_steps: int = 0) -> Dict:
    """驱动算法直至结束, 累计比特与时间开销。"""
    result_dict = {
        'total_protocol_time_us': 0.0,
        'total_reader_bits': 0.0,
        'total_steps': 0,
        'peak_metrics': {}
    }

    step_count = 0
    while not algo_instance.is_finished():
        step_result = algo_instance.perform_step()

        result_dict['total_protocol_time_us'] += calculate_time_delta(step_result)
        result_dict['total_reader_bits'] += step_result.reader_bits

        if step_result.internal_metrics:
            for key, value in step_result.internal_metrics.items():
                current_peak = result_dict['peak_metrics'].get(
                    key, float('-inf'))
                result_dict['peak_metrics'][key] = max(current_peak, value)

        step_count += 1
        if max_steps > 0 and step_count > max_steps:
            logger.error("仿真步骤 (%d) 超过最大限制 (%d)，强制终止。", step_count, max_steps)
            break

    result_dict['total_steps'] = step_count
    return result_dict


def build_algorithm(
    scenario_config: Dict,
    algorithm_class,
    algorithm_specific_config: Dict,
    needed_tags: Optional[List[Tag]] = None,
    background_tags: Optional[List[str]] = None,
) -> Optional[SelectAlgorithmInterface]:
    """
    校验配置、准备目标与背景标签并实例化算法。

    配置错误在生成任何数据之前抛出。n == 0 或关闭 ECTS 时无需规划, 返回 None。
    """
    config = AnalysisConfig.from_configs(scenario_config, algorithm_specific_config)
    config.validate()
    if not config.needs_planning:
        return None

    l_min, l_max = config.length_range()

    seed = scenario_config.get('seed')
    rng = random.Random(seed) if seed is not None else None

    if needed_tags is None:
        needed_tags = generate_scenario(scenario_config, rng)
    if len(needed_tags) != config.target_tags:
        raise InvalidConfigurationError(
            f"目标标签数 {len(needed_tags)} 与 TARGET_TAGS={config.target_tags} 不一致")
    validate_identifiers([t.id for t in needed_tags], config.bit_length)

    if background_tags is None:
        background_tags = generate_binary_strings(config.background_size, config.bit_length, rng)
    else:
        validate_identifiers(background_tags, config.bit_length)
        if len(background_tags) != config.background_size:
            logger.debug("背景标签数 %d 与 N - n = %d 不一致",
                         len(background_tags), config.background_size)

    algo_kwargs = {**algorithm_specific_config,
                   'l_min': l_min, 'l_max': l_max, 'bit_length': config.bit_length}
    return algorithm_class(needed_tags, background_tags, **algo_kwargs)


def run_simulation(
    scenario_config: Dict,
    algorithm_class,
    algorithm_specific_config: Dict,
    needed_tags: Optional[List[Tag]] = None,
    background_tags: Optional[List[str]] = None,
) -> Dict:
    """运行单次分析实验。"""
    result_dict = {
        'select_commands': 0,
        'total_select_bits': 0,
        'select_payload_bits': 0,
        'unresolved_tags': 0,
        'identified_tags_count': 0,
        'candidate_count': 0,
        'total_protocol_time_us': 0.0,
        'total_reader_bits': 0.0,
        'total_steps': 0,
        'peak_metrics': {},
    }

    algo_instance = build_algorithm(scenario_config, algorithm_class, algorithm_specific_config,
                                    needed_tags=needed_tags, background_tags=background_tags)
    if algo_instance is None:
        enabled = bool(algorithm_specific_config.get('enable_ects', True))
        result_dict['state'] = 'DONE' if enabled else 'DISABLED'
        return result_dict

    result_dict.update(execute_algorithm(
        algo_instance, max_steps=len(algo_instance.tags_in_field) + 1))
    analysis = algo_instance.get_analysis_result()

    if hasattr(algo_instance, 'metrics'):
        result_dict.update(algo_instance.metrics)

    result_dict['select_commands'] = analysis.query_count
    result_dict['total_select_bits'] = analysis.total_bits
    result_dict['unresolved_tags'] = analysis.unresolved_count
    result_dict['identified_tags_count'] = len(algo_instance.get_results())
    result_dict['candidate_count'] = analysis.candidate_count
    result_dict['state'] = analysis.state
    if analysis.length_range:
        result_dict['L_min'], result_dict['L_max'] = analysis.length_range

    return result_dict
