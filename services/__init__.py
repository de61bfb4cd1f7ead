"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- distribution_service：隊伍輪流分配與洗牌
- score_service：評分規則驗證與零分
- lookup_cache：下拉選單查詢用的 TTL cache 物件
"""
