import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from Framework import (
    SelectAlgorithmInterface,
    AlgorithmStepResult,
    AnalysisConfig,
    AnalysisResult,
    SelectQuery,
    Tag,
    CONSTANTS,
    LIMIT_INFORMATION,
    calculate_total_bits,
    build_algorithm,
    execute_algorithm,
)
from Discriminator import CandidateDiscriminator, UniqueSubstringExtractor

logger = logging.getLogger(__name__)

WindowKey = Tuple[str, int, int]


def _selection_key(item: Tuple[WindowKey, Set[int]]):
    (substring, start, end), covered = item
    # 覆盖数多者优先; 平局时起点小、长度短、字典序小者优先
    return -len(covered), start, end - start, substring


class ECTS_Algorithm(SelectAlgorithmInterface):
    """
    ECTS 贪心查询规划。

    每个 perform_step 对应一轮广播 SELECT: 选出被最多未解析目标共享的
    (子串, 起点, 终点) 窗口, 将其覆盖的目标标记为已解析, 并丢弃这些目标
    的全部剩余候选。候选耗尽而仍有目标未解析时进入 EXHAUSTED。
    """

    def __init__(self, tags_in_field: List[Tag], background_tags: List[str], **kwargs):
        super().__init__(tags_in_field, background_tags, **kwargs)

        self.enable_ects = bool(kwargs.get('enable_ects', True))
        self.query_overhead_bits = kwargs.get('query_overhead_bits', CONSTANTS.SELECT_OVERHEAD_BITS)
        self.bit_length = kwargs.get('bit_length', len(tags_in_field[0].id) if tags_in_field
                                     else CONSTANTS.BIT_LENGTH)
        self.l_min = kwargs.get('l_min', 1)
        self.l_max = kwargs.get('l_max', self.bit_length)
        self.enable_monitoring = kwargs.get('enable_resource_monitoring', False)

        self.queries: List[SelectQuery] = []
        self.unresolved: Set[int] = set(range(1, len(tags_in_field) + 1))
        self.payload_bits = 0

        if self.enable_ects and self.unresolved:
            extractor = UniqueSubstringExtractor(background_tags, self.bit_length)
            self.candidates: List[CandidateDiscriminator] = extractor.extract(
                [t.id for t in tags_in_field], self.l_min, self.l_max,
                num_workers=kwargs.get('num_workers', 1))
            self.state = 'ACTIVE'
        else:
            self.candidates = []
            self.state = 'DISABLED' if not self.enable_ects else 'DONE'

        self.candidate_count = len(self.candidates)
        self.metrics['candidate_count'] = self.candidate_count
        self._update_state()

    def _update_state(self):
        if self.state == 'DISABLED':
            return
        if not self.unresolved:
            self.state = 'DONE'
        elif not self.candidates:
            self.state = 'EXHAUSTED'
            logger.info("候选子串耗尽, %d 个目标标签无法区分 (L=%d..%d)",
                        len(self.unresolved), self.l_min, self.l_max)

    def is_finished(self) -> bool:
        return self.state != 'ACTIVE'

    def _group_candidates(self) -> Dict[WindowKey, Set[int]]:
        groups: Dict[WindowKey, Set[int]] = defaultdict(set)
        for cand in self.candidates:
            groups[(cand.substring, cand.start, cand.end)].add(cand.tag_index)
        return groups

    def perform_step(self) -> AlgorithmStepResult:
        if self.is_finished():
            return AlgorithmStepResult('internal_op', operation_description="完成")

        groups = self._group_candidates()
        (substring, start, end), covered = min(groups.items(), key=_selection_key)

        query = SelectQuery(substring, start, end, frozenset(covered))
        self.queries.append(query)
        self.payload_bits += query.length
        self.metrics['select_commands'] += 1
        self.metrics['select_payload_bits'] = self.payload_bits

        self.unresolved -= covered
        for tag_index in covered:
            self.identified_tags.add(self.tags_in_field[tag_index - 1].id)
        self.candidates = [c for c in self.candidates if c.tag_index not in covered]
        self._update_state()

        result = AlgorithmStepResult(
            'select_cmd',
            reader_bits=query.length + self.query_overhead_bits,
            operation_description=f"SELECT '{substring}' @[{start},{end}) 覆盖 {len(covered)} 个标签")
        if self.enable_monitoring:
            result.internal_metrics = {'unresolved': len(self.unresolved),
                                       'remaining_candidates': len(self.candidates)}
        return result

    def get_analysis_result(self) -> AnalysisResult:
        unresolved_ids = [self.tags_in_field[i - 1].id for i in sorted(self.unresolved)]
        if self.state == 'DISABLED':
            unresolved_ids = []
        return AnalysisResult(
            query_count=len(self.queries),
            total_bits=calculate_total_bits(self.queries, self.query_overhead_bits),
            unresolved_count=len(unresolved_ids),
            queries=list(self.queries),
            unresolved_tags=unresolved_ids,
            state=self.state,
            length_range=(self.l_min, self.l_max),
            candidate_count=self.candidate_count,
        )


def analyze_tags(needed_tags: Sequence[str], total_tags: int, limit_mode: int = LIMIT_INFORMATION,
                 enable_ects=True, background_tags: Optional[List[str]] = None,
                 query_overhead_bits: int = CONSTANTS.SELECT_OVERHEAD_BITS,
                 bit_length: int = CONSTANTS.BIT_LENGTH, num_workers: int = 1,
                 seed: Optional[int] = None) -> AnalysisResult:
    """
    对给定目标标签执行一次完整分析: 生成背景 -> 提取候选 -> ECTS 规划 -> 计算开销。

    Args:
        needed_tags: 目标标签 (二进制串), n = len(needed_tags)
        total_tags: 假定的总标签数 N
        limit_mode: 子串长度范围策略 (0, 1, 2, 其它按 1)
        enable_ects: 关闭时不规划查询, 结果为 (0, 0)
        background_tags: 指定背景集合; 为 None 时随机生成 N - n 个
        seed: 背景生成的随机种子

    Returns:
        AnalysisResult, 其中 as_tuple() 为 (SELECT 命令数, 总比特数)
    """
    needed_tags = list(needed_tags)
    config = AnalysisConfig(
        total_tags=total_tags,
        target_tags=len(needed_tags),
        limit_mode=limit_mode,
        enable_ects=bool(enable_ects),
        query_overhead_bits=query_overhead_bits,
        bit_length=bit_length,
    )
    scenario_config = {
        'TOTAL_TAGS': config.total_tags,
        'TARGET_TAGS': config.target_tags,
        'BINARY_LENGTH': config.bit_length,
        'seed': seed,
    }
    algorithm_config = {
        'limit_mode': config.limit_mode,
        'enable_ects': config.enable_ects,
        'query_overhead_bits': config.query_overhead_bits,
        'bit_length': config.bit_length,
        'num_workers': num_workers,
    }

    algo = build_algorithm(scenario_config, ECTS_Algorithm, algorithm_config,
                           needed_tags=[Tag(identity_code=t) for t in needed_tags],
                           background_tags=background_tags)
    if algo is None:
        return AnalysisResult(state='DONE' if config.enable_ects else 'DISABLED')

    execute_algorithm(algo, max_steps=config.target_tags + 1)
    result = algo.get_analysis_result()
    if result.is_partial:
        logger.warning("ECTS 部分解析: %d/%d 个目标标签未被任何查询覆盖",
                       result.unresolved_count, config.target_tags)
    return result
