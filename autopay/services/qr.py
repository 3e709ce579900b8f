"""UPI mandate QR payloads and PNG data URLs."""
import base64
from datetime import datetime
from io import BytesIO
from urllib.parse import quote

import qrcode


def format_upi_date(moment: datetime) -> str:
    """YYYYMMDD as used by the UPI mandate validity parameters."""
    return moment.strftime("%Y%m%d")


def format_upi_amount(amount_minor: int) -> str:
    rupees, paise = divmod(int(amount_minor), 100)
    return f"{rupees}" if paise == 0 else f"{rupees}.{paise:02d}"


def build_mandate_uri(
    mandate_id: str,
    payee_vpa: str,
    merchant_name: str,
    merchant_code: str,
    amount_minor: int,
    start_date: datetime,
    end_date: datetime,
) -> str:
    """``upi://mandate`` URI for a monthly recurring debit."""
    return "".join([
        "upi://mandate",
        f"?pa={quote(payee_vpa, safe='')}",
        f"&pn={quote(merchant_name, safe='')}",
        f"&am={format_upi_amount(amount_minor)}",
        "&cu=INR",
        "&mode=02",
        "&purpose=14",
        f"&orgid={merchant_code}",
        f"&mid={mandate_id}",
        f"&validitystart={format_upi_date(start_date)}",
        f"&validityend={format_upi_date(end_date)}",
        "&frequency=30",
        "&recurring=1",
    ])


def render_qr_data_url(data: str, box_size: int = 10, border: int = 2) -> str:
    """Encode ``data`` as a QR code and return it as a base64 PNG data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color='black', back_color='white')
    buffer = BytesIO()
    img.save(buffer, format='PNG')
    qr_base64 = base64.b64encode(buffer.getvalue()).decode()
    return f'data:image/png;base64,{qr_base64}'
