"""
隊伍分配服務：把隊伍分給評審

純計算，不改變任何狀態。是否隨機由呼叫端決定：
先用 shuffled() 打亂，distribute_teams() 會保持傳入的順序。
"""
import random
from typing import Dict, List, Optional, Sequence

from core.exceptions import InvalidArgument, ValidationError


def distribute_teams(team_ids: Sequence[int], jury_ids: Sequence[int]) -> Dict[int, int]:
    """
    輪流分配：第 i 個隊伍分給 jury_ids[i % len(jury_ids)]

    n 個隊伍、k 位評審時，每位評審分到 floor(n/k) 或 ceil(n/k) 個隊伍，
    每個隊伍恰好出現一次。

    參數：
        team_ids: 有順序的隊伍 id（不可重複）
        jury_ids: 有順序的評審 id（不可重複）

    返回：
        {team_id: jury_id}

    異常：
        InvalidArgument: 有隊伍但沒有評審
        ValidationError: id 重複

    範例：
        distribute_teams([1, 2, 3], [10, 20]) -> {1: 10, 2: 20, 3: 10}
        distribute_teams([], []) -> {}
    """
    if len(set(team_ids)) != len(team_ids):
        raise ValidationError("Team ids must be unique")
    if len(set(jury_ids)) != len(jury_ids):
        raise ValidationError("Jury ids must be unique")
    if team_ids and not jury_ids:
        raise InvalidArgument("Cannot distribute teams without any jury")

    return {
        team_id: jury_ids[index % len(jury_ids)]
        for index, team_id in enumerate(team_ids)
    }


def shuffled(team_ids: Sequence[int], rng: Optional[random.Random] = None) -> List[int]:
    """回傳 team_ids 的隨機排列（不修改傳入的 list）"""
    rng = rng or random.Random()
    result = list(team_ids)
    rng.shuffle(result)
    return result


def group_by_jury(assignments: Dict[int, int]) -> Dict[int, List[int]]:
    """
    將 {team_id: jury_id} 反轉為 {jury_id: [team_id, ...]}

    每個 list 內的隊伍順序與傳入的 mapping 相同
    """
    grouped: Dict[int, List[int]] = {}
    for team_id, jury_id in assignments.items():
        grouped.setdefault(jury_id, []).append(team_id)
    return grouped
