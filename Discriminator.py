import multiprocessing
from typing import Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from Framework import CONSTANTS, InvalidConfigurationError


class CandidateDiscriminator(NamedTuple):
    """
    目标标签在窗口 [start, end) 上的唯一子串。
    tag_index 从 1 开始编号, 对应目标列表中的位置。
    """
    tag_index: int
    substring: str
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


class UniqueSubstringExtractor:
    """
    为每个目标标签寻找背景集合中不存在的子串窗口。

    背景标签在每个窗口 (start, end) 上的取值按需建立集合索引,
    之后每次判定都是一次集合查找。
    """

    def __init__(self, background_tags: Sequence[str], bit_length: int = CONSTANTS.BIT_LENGTH):
        if bit_length <= 0:
            raise InvalidConfigurationError(f"BIT_LENGTH 必须为正, 当前 {bit_length}")
        self.background_tags = list(background_tags)
        self.bit_length = bit_length
        self._window_index: Dict[Tuple[int, int], Set[str]] = {}

    def _window_values(self, start: int, end: int) -> Set[str]:
        key = (start, end)
        values = self._window_index.get(key)
        if values is None:
            values = {tag[start:end] for tag in self.background_tags}
            self._window_index[key] = values
        return values

    def is_unique(self, substring: str, start: int, end: int) -> bool:
        return substring not in self._window_values(start, end)

    def candidates_for_tag(self, tag_index: int, tag_id: str,
                           l_min: int, l_max: int) -> List[CandidateDiscriminator]:
        # 长度从 l_min 递增, 同一长度内起点从左到右
        found = []
        for length in range(l_min, l_max + 1):
            for start in range(0, self.bit_length - length + 1):
                end = start + length
                substring = tag_id[start:end]
                if self.is_unique(substring, start, end):
                    found.append(CandidateDiscriminator(tag_index, substring, start, end))
        return found

    def extract(self, needed_tags: Sequence[str], l_min: int, l_max: int,
                num_workers: int = 1) -> List[CandidateDiscriminator]:
        """
        枚举所有目标标签的候选子串。

        Args:
            needed_tags: 目标标签二进制串, 顺序决定 tag_index (1-based)
            l_min, l_max: 子串长度范围 (闭区间), 调用方负责截断
            num_workers: >1 时按目标标签并行搜索

        Returns:
            按 (目标顺序, 长度, 起点) 排列的候选列表
        """
        if l_min < 1 or l_max > self.bit_length or l_min > l_max:
            return []

        indexed = list(enumerate(needed_tags, start=1))
        if num_workers > 1 and len(indexed) > 1:
            return self._extract_parallel(indexed, l_min, l_max, num_workers)

        candidates = []
        for tag_index, tag_id in indexed:
            candidates.extend(self.candidates_for_tag(tag_index, tag_id, l_min, l_max))
        return candidates

    def _extract_parallel(self, indexed: List[Tuple[int, str]], l_min: int, l_max: int,
                          num_workers: int) -> List[CandidateDiscriminator]:
        tasks = [(tag_index, tag_id, l_min, l_max) for tag_index, tag_id in indexed]
        with multiprocessing.Pool(processes=num_workers,
                                  initializer=_init_worker,
                                  initargs=(self.background_tags, self.bit_length)) as pool:
            # imap 保持输入顺序, 合并结果即为分组前的同步点
            per_tag = pool.imap(_worker_candidates, tasks)
            candidates = []
            for found in per_tag:
                candidates.extend(found)
        return candidates


_worker_extractor: Optional[UniqueSubstringExtractor] = None


def _init_worker(background_tags: List[str], bit_length: int):
    global _worker_extractor
    _worker_extractor = UniqueSubstringExtractor(background_tags, bit_length)


def _worker_candidates(task: tuple) -> List[CandidateDiscriminator]:
    tag_index, tag_id, l_min, l_max = task
    return _worker_extractor.candidates_for_tag(tag_index, tag_id, l_min, l_max)
