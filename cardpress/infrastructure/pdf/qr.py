# infrastructure/pdf/qr.py
from typing import List

from reportlab.graphics.barcode.qrencoder import QRCode, QRErrorCorrectLevel


def qr_matrix(payload: str) -> List[List[bool]]:
    """Dark/light modules of the smallest QR symbol holding ``payload``, row major."""
    qr = QRCode(None, QRErrorCorrectLevel.M)
    qr.addData(payload)
    qr.make()
    count = qr.getModuleCount()
    return [[bool(qr.isDark(row, col)) for col in range(count)] for row in range(count)]


def dark_runs(matrix: List[List[bool]]):
    """Yield ``(row, col, length)`` for each horizontal run of dark modules."""
    for row, modules in enumerate(matrix):
        col = 0
        size = len(modules)
        while col < size:
            if not modules[col]:
                col += 1
                continue
            start = col
            while col < size and modules[col]:
                col += 1
            yield row, start, col - start
