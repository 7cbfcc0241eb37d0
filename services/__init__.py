"""
服務層

這個 package 包含純計算邏輯與外部輸出，不負責狀態轉換：
- LedgerService：金額、明細小計、單據合計
- ReceiptService / ReceiptFormatter：收據快照與排版
- ReceiptPrinter：收據輸出（檔案 / 網路印表機）
- ReportService：營收與房間使用統計
- SeedService：預設房間
"""
