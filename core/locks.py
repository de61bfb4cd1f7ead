"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

使用 SELECT ... FOR UPDATE 實現悲觀鎖（Pessimistic Locking）。
不支援行級鎖的資料庫（SQLite）會忽略這個子句，所以評分的唯一約束
與 MarkManager 的條件式 UPDATE 才是最終防線。
"""
from sqlalchemy.orm import Session, Query

from models import EvaluationSession, Mark


def with_session_lock(session_id: int, db: Session) -> Query:
    """
    鎖定一個評分場次（行級鎖）

    使用場景：
    - 開始、結束或發布場次時
    - 需要確保場次在整個 transaction 期間不被其他請求修改

    範例：
        session = with_session_lock(session_id, db).first()
        if not session:
            raise NotFoundError("Session", session_id)
        session.started_at = utcnow()
        db.commit()

    參數：
        session_id: 場次 id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）
    """
    return db.query(EvaluationSession).filter(
        EvaluationSession.id == session_id
    ).with_for_update(nowait=False)


def with_mark_lock(mark_id: int, db: Session) -> Query:
    """
    鎖定一筆評分（行級鎖）

    在同一個 transaction 內檢查 `locked` 並寫入時使用
    """
    return db.query(Mark).filter(
        Mark.id == mark_id
    ).with_for_update(nowait=False)

