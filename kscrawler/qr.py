"""QR helpers for the login flow: decode the captured image, echo it to the terminal."""
from __future__ import annotations

import base64
import io
import logging
from typing import Optional

import cv2
import numpy as np
import qrcode
from PIL import Image

logger = logging.getLogger("crawler-session")


def decode_data_url(src: str) -> Optional[bytes]:
    """``data:image/png;base64,...`` -> raw bytes; None for anything else."""
    if not src or not src.startswith("data:image") or "," not in src:
        return None
    try:
        return base64.b64decode(src.split(",", 1)[1])
    except (ValueError, TypeError):
        return None


def decode_qr_image(image_bytes: bytes) -> Optional[str]:
    """Image bytes -> RGB pixel buffer -> QR payload. None when nothing decodes."""
    if not image_bytes:
        return None
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            rgb = img.convert("RGB")
            # small login QRs decode more reliably upscaled
            if min(rgb.size) < 300:
                factor = max(2, 300 // max(1, min(rgb.size)))
                rgb = rgb.resize((rgb.width * factor, rgb.height * factor), Image.NEAREST)
            pixels = np.array(rgb)
    except (OSError, ValueError) as exc:
        logger.warning("QR image unreadable: %s", exc)
        return None
    try:
        bgr = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
        payload, _, _ = cv2.QRCodeDetector().detectAndDecode(bgr)
    except cv2.error as exc:
        logger.warning("QR decoder failed: %s", exc)
        return None
    return payload or None


def render_terminal_qr(payload: str) -> str:
    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()
