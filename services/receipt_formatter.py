"""
收據排版：純文字（40 字元寬）與 ESC/POS bytes

純計算邏輯，不做任何 I/O
"""
from decimal import Decimal

from services.receipt_service import ReceiptSnapshot

WIDTH = 40

# ESC/POS 指令
ESC_INIT = b"\x1b\x40"
ESC_CUT = b"\x1d\x56\x41\x10"  # partial cut
ESC_ALIGN_CENTER = b"\x1b\x61\x01"
ESC_ALIGN_LEFT = b"\x1b\x61\x00"
ESC_BOLD_ON = b"\x1b\x45\x01"
ESC_BOLD_OFF = b"\x1b\x45\x00"

# 土耳其文熱感印表機大多使用 CP857
ESCPOS_ENCODING = "cp857"


def format_money(value: Decimal) -> str:
    """最多兩位小數，去掉多餘的 0：300.00 -> 300，10.50 -> 10.5"""
    text = f"{Decimal(value).quantize(Decimal('0.01')):f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-", "-0") else text


def format_qty(qty: float) -> str:
    return f"{qty:g}"


def format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def center(text: str, width: int = WIDTH) -> str:
    text = text.strip()
    if len(text) >= width:
        return text
    return " " * ((width - len(text)) // 2) + text


def align(left: str, right: str, width: int = WIDTH) -> str:
    left, right = left.strip(), right.strip()
    spaces = max(1, width - len(left) - len(right))
    return left + " " * spaces + right


def _body_lines(receipt: ReceiptSnapshot) -> list:
    """表頭之後、結尾之前的內容，純文字與 ESC/POS 共用"""
    lines = [
        f"Room   : {receipt.room_name}",
        f"Ticket : {receipt.session_id}",
        f"Start  : {format_time(receipt.start_at)}",
        f"End    : {format_time(receipt.end_at)}",
        "-" * WIDTH,
    ]
    for line in receipt.lines:
        lines.append(line.name)
        lines.append(align(
            f"{format_qty(line.qty)} x {format_money(line.unit_price)}",
            format_money(line.total)
        ))
    lines.append("-" * WIDTH)
    lines.append(align("Items Total", format_money(receipt.items_total)))
    for payment in receipt.payments:
        lines.append(align(f"Pay {payment.method}", format_money(payment.amount)))
    if receipt.payments:
        lines.append(align("Payments Total", format_money(receipt.payments_total)))
    lines.append("-" * WIDTH)
    lines.append(align("Balance", format_money(receipt.balance)))
    return lines


def to_plain_text(receipt: ReceiptSnapshot) -> str:
    """
    收據純文字版（PREVIEW 模式與除錯用）

    範例：
                HAMAM POS RECEIPT
        ----------------------------------------
        Room   : Hot Room 1
        ...
        Massage
        1 x 300                              300
    """
    out = [center(receipt.title)]
    if receipt.business_name:
        out.append(center(receipt.business_name))
    out.append("-" * WIDTH)
    out.extend(_body_lines(receipt))
    out.append("-" * WIDTH)
    out.append(center("Thank you!"))
    out.extend(["", ""])
    return "\n".join(out) + "\n"


def to_escpos(receipt: ReceiptSnapshot) -> bytes:
    """
    收據 ESC/POS byte stream（熱感印表機）

    編碼：CP857，無法編碼的字元以 '?' 取代
    """
    def encode(text: str) -> bytes:
        return (text + "\n").encode(ESCPOS_ENCODING, errors="replace")

    chunks = [ESC_INIT, ESC_ALIGN_CENTER, ESC_BOLD_ON, encode(receipt.title)]
    if receipt.business_name:
        chunks.append(encode(receipt.business_name))
    chunks.append(ESC_BOLD_OFF)
    chunks.append(encode("-" * WIDTH))
    chunks.append(ESC_ALIGN_LEFT)
    chunks.extend(encode(line) for line in _body_lines(receipt))
    chunks.append(ESC_ALIGN_CENTER)
    chunks.extend([encode(""), encode("Thank you!"), encode("")])
    chunks.append(ESC_CUT)
    return b"".join(chunks)
