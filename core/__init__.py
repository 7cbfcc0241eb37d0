"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理單據與房間的狀態轉換
- Manager：管理單據與房間的生命週期（transaction 層）
- Engine：commit 之後的通知與收據
- Events：即時通知的 Fan-out
- Locks：並發控制工具
"""
