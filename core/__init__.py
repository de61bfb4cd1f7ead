"""
核心業務邏輯層

這個 package 包含所有會改變狀態的業務規則：
- 狀態機：場次 Pending -> Active -> Ended 的狀態轉換
- Manager：場次生命週期、評審/隊伍指派、評分、名冊
- Bulk lock：場次結束與評審「全部送出」時的批次鎖定
- Locks：行級並發控制工具
"""
