"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理
"""


class MarkingEngineException(Exception):
    """所有評分引擎異常的基類"""
    pass


# ============ 查詢相關異常 ============

class NotFoundError(MarkingEngineException):
    """指定的 id 不存在"""
    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class RelationError(MarkingEngineException):
    """關聯參照不存在或不被允許"""
    pass


# ============ 評分相關異常 ============

class DuplicateMark(MarkingEngineException):
    """同一組 (team, jury, session) 已經有評分"""
    def __init__(self, team_id, jury_id, session_id):
        self.team_id = team_id
        self.jury_id = jury_id
        self.session_id = session_id
        super().__init__(
            f"Mark already exists for team {team_id}, jury {jury_id}, session {session_id}"
        )


class LockedError(MarkingEngineException):
    """嘗試修改已鎖定的評分"""
    def __init__(self, mark_id):
        self.mark_id = mark_id
        super().__init__(f"Mark {mark_id} is locked")


# ============ 生命週期相關異常 ============

class InvalidState(MarkingEngineException):
    """目前狀態不允許此狀態轉換"""
    pass


# ============ 輸入相關異常 ============

class ValidationError(MarkingEngineException):
    """分數超出範圍或輸入格式錯誤"""
    pass


class InvalidArgument(ValidationError):
    """無法處理的參數組合（例如沒有評審可以分配）"""
    pass
