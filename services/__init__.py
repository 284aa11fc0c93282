"""
服務層

這個 package 包含純計算邏輯與外部資料來源，不負責狀態轉換：
- PayoutService：Parimutuel 計分邏輯
- ProjectionService：給前端的唯讀回合 projection
- HistoryService：回合歷史與可領取回合
- PriceOracle：價格來源
- Keeper：定期觸發 orchestrator
"""
