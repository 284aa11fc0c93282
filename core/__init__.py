"""
核心業務邏輯層

這個 package 包含回合生命週期的核心，包括：
- 狀態機：集中定義所有依時間推導的回合判斷
- Ledger：帳本介面與 SQLAlchemy 參考實作
- Orchestrator：驅動回合的結算與開始
- Locks：並發控制工具
"""
