"""
收據輸出：只有一個能力 deliver(snapshot)

- PreviewReceiptPrinter：寫 .txt 與 .escpos 檔到資料夾（開發 / 測試用）
- EscPosTcpPrinter：ESC/POS over TCP（網路熱感印表機，port 9100）

由設定 printer_mode 決定用哪一個，Session Engine 只認得 deliver()
"""
import logging
import re
import socket
from pathlib import Path
from typing import Protocol

from services.receipt_formatter import to_plain_text, to_escpos
from services.receipt_service import ReceiptSnapshot

logger = logging.getLogger(__name__)


class ReceiptPrinter(Protocol):
    def deliver(self, receipt: ReceiptSnapshot) -> None:
        ...


def _safe_filename(name: str) -> str:
    return re.sub(r'[<>:"/\\|?*\x00-\x1f]', "_", name)


class PreviewReceiptPrinter:
    """不印出，改寫檔案：<session_id>.txt（人看的）與 <session_id>.escpos（原始 bytes）"""

    def __init__(self, output_dir):
        self.output_dir = Path(output_dir)

    def deliver(self, receipt: ReceiptSnapshot) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        base = _safe_filename(receipt.session_id)

        txt_path = self.output_dir / f"{base}.txt"
        txt_path.write_text(to_plain_text(receipt), encoding="utf-8")
        (self.output_dir / f"{base}.escpos").write_bytes(to_escpos(receipt))

        logger.info(f"[PREVIEW] Receipt saved: {txt_path}")


class EscPosTcpPrinter:
    """ESC/POS over TCP，設定 printer_mode=LAN 時使用"""

    def __init__(self, host: str, port: int = 9100, timeout: float = 5.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    def deliver(self, receipt: ReceiptSnapshot) -> None:
        payload = to_escpos(receipt)
        with socket.create_connection((self.host, self.port), timeout=self.timeout) as conn:
            conn.sendall(payload)

        logger.info(
            "Receipt for session %s sent to %s:%s (%d bytes)",
            receipt.session_id, self.host, self.port, len(payload)
        )


def build_receipt_printer(settings) -> ReceiptPrinter:
    """
    依設定建立收據輸出

    參數：
        settings: database.Settings

    異常：
        ValueError: 不支援的 printer_mode
    """
    mode = settings.printer_mode.strip().upper()
    if mode == "PREVIEW":
        return PreviewReceiptPrinter(settings.printer_preview_dir)
    if mode == "LAN":
        return EscPosTcpPrinter(settings.printer_host, settings.printer_port, settings.printer_timeout)
    raise ValueError(f"Unsupported printer mode: {settings.printer_mode}")
