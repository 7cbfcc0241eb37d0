"""
API 層：FastAPI routers（HTTP + WebSocket）
"""
