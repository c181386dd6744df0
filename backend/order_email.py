import math
import re
from datetime import datetime
from typing import Dict, List, Optional

from markupsafe import escape

IMAGES_PREFIX = "images"
ABSOLUTE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
IMAGES_PREFIX_PATTERN = re.compile(r"^/?images/?", re.IGNORECASE)
HTML_FALLBACK_TEXT = "Please view this email in HTML format."

CELL_STYLE = "padding:8px;border-bottom:1px solid #ddd;"
HEADER_CELL_STYLE = "text-align:left;padding:8px;border-bottom:1px solid #ddd;"


class ValidationError(ValueError):
    """Raised when the inbound order payload is missing or malformed."""


def safe_float(value, default=0.0):
    if value is None:
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isfinite(numeric):
        return numeric
    return 0.0


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def resolve_host_url(configured_url: Optional[str], request_host_url: str) -> str:
    configured = (configured_url or "").strip()
    if configured:
        return configured.rstrip("/")
    return (request_host_url or "").rstrip("/")


def build_image_src(image, host_url: str) -> str:
    if not image:
        return ""
    reference = str(image).strip()
    if not reference:
        return ""
    if ABSOLUTE_URL_PATTERN.match(reference):
        return reference
    filename = IMAGES_PREFIX_PATTERN.sub("", reference, count=1).lstrip("/")
    return f"{host_url.rstrip('/')}/{IMAGES_PREFIX}/{filename}"


def parse_created_at(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return datetime.now()
    candidate = clean_text(value)
    if candidate:
        try:
            parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now()
        if parsed.tzinfo is not None:
            return parsed.astimezone().replace(tzinfo=None)
        return parsed
    return datetime.now()


def normalize_order_item(entry: Dict, host_url: str) -> Dict[str, object]:
    return {
        "name": clean_text(entry.get("name")),
        "image_url": build_image_src(entry.get("image"), host_url),
        "quantity": safe_float(entry.get("quantity"), 1.0),
        "price": safe_float(entry.get("price"), 0.0),
    }


def _section(order: Dict, key: str) -> Dict:
    value = order.get(key)
    return value if isinstance(value, dict) else {}


def normalize(order, host_url: str) -> Dict[str, object]:
    """Build the display view of an order for the notification emails.

    The caller's payload is only read. Missing text fields become empty
    strings and numbers that cannot be read fall back to ``0``, so rendering
    never fails on a loosely shaped order. Only a missing or non-object
    ``order`` is rejected.
    """
    if order is None:
        raise ValidationError("Missing order")
    if not isinstance(order, dict):
        raise ValidationError("Order must be an object")

    customer = _section(order, "customer")
    pricing = _section(order, "pricing")
    shipping_method = _section(order, "shippingMethod")
    payment = _section(order, "payment")

    raw_items = order.get("items")
    if not isinstance(raw_items, list):
        raw_items = []
    items = [
        normalize_order_item(entry, host_url)
        for entry in raw_items
        if isinstance(entry, dict)
    ]

    return {
        "id": "" if isinstance(order.get("id"), bool) else clean_text(order.get("id")),
        "created_at": parse_created_at(order.get("createdAt")),
        "customer": {
            field: clean_text(customer.get(field))
            for field in ("firstName", "lastName", "phone", "email", "address", "city")
        },
        "items": items,
        "pricing": {
            field: safe_float(pricing.get(field), 0.0)
            for field in ("subtotal", "shipping", "total")
        },
        "shipping_method": clean_text(shipping_method.get("name")),
        "payment": {
            "pochi_number": clean_text(payment.get("pochiNumber")),
            "mpesa_code": clean_text(payment.get("mpesaCode")),
        },
        "note": clean_text(order.get("note")),
    }


def order_suffix(order: Dict) -> str:
    return f" #{order['id']}" if order.get("id") else ""


def owner_subject(order: Dict) -> str:
    return f"New Order{order_suffix(order)}"


def customer_subject(order: Dict) -> str:
    return f"Your Order Confirmation{order_suffix(order)}"


def _image_tag(item: Dict) -> str:
    if not item["image_url"]:
        return ""
    return (
        f'<img src="{escape(item["image_url"])}" alt="{escape(item["name"])}" '
        f'width="60" style="display:block;">'
    )


def _full_name(customer: Dict) -> str:
    return f"{customer['firstName']} {customer['lastName']}".strip()


def _owner_rows(items: List[Dict], currency: str) -> str:
    return "".join(
        f"""
      <tr>
        <td style="{CELL_STYLE}">{escape(item['name'])}</td>
        <td style="{CELL_STYLE}">{_image_tag(item)}</td>
        <td style="{CELL_STYLE}">{format_amount(item['quantity'])}</td>
        <td style="{CELL_STYLE}">{currency} {format_amount(item['price'])}</td>
      </tr>"""
        for item in items
    )


def _customer_rows(items: List[Dict], currency: str) -> str:
    return "".join(
        f"""
      <tr>
        <td style="{CELL_STYLE}">{_image_tag(item)}</td>
        <td style="{CELL_STYLE}">
          <p><strong>{escape(item['name'])}</strong></p>
          <p>Qty: {format_amount(item['quantity'])}</p>
          <p>{currency} {format_amount(item['price'])} each</p>
        </td>
      </tr>"""
        for item in items
    )


def render_owner_html(order: Dict, currency: str = "Ksh") -> str:
    customer = order["customer"]
    pricing = order["pricing"]
    payment = order["payment"]
    currency = escape(currency)
    created_at = order["created_at"].strftime("%Y-%m-%d %H:%M")
    note_block = (
        f"<p><strong>Customer Note:</strong> {escape(order['note'])}</p>"
        if order["note"]
        else ""
    )

    return f"""<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">
  <h2 style="color:#d4a017;">New Order{escape(order_suffix(order))}</h2>
  <p><strong>Date:</strong> {created_at}</p>

  <h3 style="margin-top:20px;">Customer Details</h3>
  <p>{escape(_full_name(customer))}</p>
  <p>Phone: {escape(customer['phone'])}</p>
  <p>Email: {escape(customer['email'] or 'Not provided')}</p>
  <p>Address: {escape(customer['address'])}, {escape(customer['city'])}</p>

  <h3 style="margin-top:20px;">Order Summary</h3>
  <table style="width:100%;border-collapse:collapse;">
    <tr>
      <th style="{HEADER_CELL_STYLE}">Item</th>
      <th style="{HEADER_CELL_STYLE}">Image</th>
      <th style="{HEADER_CELL_STYLE}">Qty</th>
      <th style="{HEADER_CELL_STYLE}">Price</th>
    </tr>{_owner_rows(order['items'], currency)}
  </table>

  <div style="margin-top:20px;">
    <p><strong>Subtotal:</strong> {currency} {format_amount(pricing['subtotal'])}</p>
    <p><strong>Shipping:</strong> {escape(order['shipping_method'])} ({currency} {format_amount(pricing['shipping'])})</p>
    <p><strong>Total:</strong> {currency} {format_amount(pricing['total'])}</p>
  </div>

  <div style="margin-top:20px;">
    <h3>Payment Details</h3>
    <p>M-Pesa Pochi: {escape(payment['pochi_number'])}</p>
    <p>Transaction Code: {escape(payment['mpesa_code'])}</p>
  </div>

  {note_block}
</div>"""


def render_customer_html(
    order: Dict, currency: str = "Ksh", team_name: str = "Yarnly Chic"
) -> str:
    customer = order["customer"]
    pricing = order["pricing"]
    currency = escape(currency)

    return f"""<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">
  <h2 style="color:#d4a017;">Thank you for your order!</h2>
  <p>Your order{escape(order_suffix(order))} has been received.</p>

  <h3 style="margin-top:20px;">Order Summary</h3>
  <table style="width:100%;border-collapse:collapse;">{_customer_rows(order['items'], currency)}
  </table>

  <div style="margin-top:20px;background:#f8f8f8;padding:15px;">
    <p><strong>Subtotal:</strong> {currency} {format_amount(pricing['subtotal'])}</p>
    <p><strong>Shipping:</strong> {currency} {format_amount(pricing['shipping'])}</p>
    <p><strong>Total:</strong> {currency} {format_amount(pricing['total'])}</p>
  </div>

  <div style="margin-top:20px;">
    <h3>Shipping To</h3>
    <p>{escape(_full_name(customer))}</p>
    <p>{escape(customer['address'])}, {escape(customer['city'])}</p>
    <p>Phone: {escape(customer['phone'])}</p>
  </div>

  <p style="margin-top:20px;">We'll notify you when your order ships. For questions, reply to this email.</p>
  <p style="margin-top:30px;color:#888;"><small>{escape(team_name)} Team</small></p>
</div>"""


def render_text(order: Dict, currency: str = "Ksh") -> str:
    item_lines = ", ".join(
        f"{item['name']} x{format_amount(item['quantity'])} "
        f"({currency} {format_amount(item['price'])})"
        for item in order["items"]
    )
    return (
        f"Order{order_suffix(order)} on "
        f"{order['created_at'].strftime('%Y-%m-%d %H:%M')}.\n"
        f"Items: {item_lines or 'none'}.\n"
        f"Total: {currency} {format_amount(order['pricing']['total'])}.\n\n"
        f"{HTML_FALLBACK_TEXT}"
    )
