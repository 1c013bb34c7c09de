"""Admin blueprint — /api/admin/*

Read projections over the ledger for the admin dashboard, plus the
cancellation logger called when a payer abandons Stripe Checkout.
All routes require the X-Admin-Secret header.

Route Map:
  GET  /api/admin/events                           — All events, newest first
  GET  /api/admin/events/seller?seller_id=&month=  — Seller sales + volume
  GET  /api/admin/user/events?customer_id=         — A customer's events
  GET  /api/admin/user/points?customer_id=         — A customer's balance
  POST /api/admin/checkout/cancel                  — Log a cancelled checkout
"""

import logging
import re

from flask import Blueprint, jsonify, request

from points_ledger.decorators import admin_secret_required
from points_ledger.errors import StorageUnavailable
from points_ledger.services import get_services
from points_ledger.services.event_processor import parse_seller_id

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


@admin_bp.errorhandler(StorageUnavailable)
def storage_unavailable(e):
    return jsonify({"error": "Ledger storage unavailable."}), 500


# ══════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════

@admin_bp.route("/events")
@admin_secret_required
def all_events():
    """Every purchase event, newest first."""
    events = get_services().store.list_events()
    return jsonify([event.to_dict() for event in events])


@admin_bp.route("/events/seller")
@admin_secret_required
def seller_events():
    """Successful events for one seller, optionally within a month (YYYY-MM)."""
    seller_id = request.args.get("seller_id", "").strip()
    if not seller_id:
        return jsonify({"error": "seller_id is required"}), 400
    try:
        seller_id = int(seller_id)
    except ValueError:
        return jsonify({"error": "seller_id must be an integer"}), 400

    year = month = None
    month_param = request.args.get("month", "").strip()
    if month_param:
        match = MONTH_RE.match(month_param)
        if not match or not 1 <= int(match.group(2)) <= 12:
            return jsonify({"error": "Invalid month format. Use YYYY-MM."}), 400
        year, month = int(match.group(1)), int(match.group(2))

    events, total_volume = get_services().store.seller_report(
        seller_id, year=year, month=month
    )
    return jsonify({
        "seller_id": seller_id,
        "month": month_param or None,
        "events": [event.to_dict() for event in events],
        "total_volume": total_volume,
    })


# ══════════════════════════════════════════════
#  CUSTOMERS
# ══════════════════════════════════════════════

@admin_bp.route("/user/events")
@admin_secret_required
def customer_events():
    customer_id = request.args.get("customer_id", "").strip()
    if not customer_id:
        return jsonify({"error": "customer_id query parameter is required."}), 400

    events = get_services().store.events_for_customer(customer_id)
    return jsonify([event.to_dict() for event in events])


@admin_bp.route("/user/points")
@admin_secret_required
def customer_points():
    """Current balance; customers without a row have 0 points."""
    customer_id = request.args.get("customer_id", "").strip()
    if not customer_id:
        return jsonify({"error": "customer_id query parameter is required."}), 400

    record = get_services().projector.get_record(customer_id)
    if record is None:
        return jsonify({
            "customer_id": customer_id,
            "total_points": 0,
            "last_updated": None,
        })
    return jsonify(record.to_dict())


# ══════════════════════════════════════════════
#  CANCELLATIONS
# ══════════════════════════════════════════════

@admin_bp.route("/checkout/cancel", methods=["POST"])
@admin_secret_required
def log_cancellation():
    """Record that the payer cancelled on the Stripe page.

    Body: { customer_id, product_id, session_id, seller_id? }
    A session that already succeeded keeps its PAYMENT_SUCCESS row.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    customer_id = str(data.get("customer_id") or "").strip()
    product_id = str(data.get("product_id") or "").strip()
    session_id = str(data.get("session_id") or "").strip()

    if not customer_id or not product_id or not session_id:
        return jsonify({
            "error": "Missing required fields: customer_id, product_id, session_id"
        }), 400

    services = get_services()
    if services.catalog.get(product_id) is None:
        return jsonify({"error": "Invalid Product ID"}), 400

    result = services.processor.record_cancellation(
        session_id=session_id,
        customer_id=customer_id,
        product_id=product_id,
        seller_id=parse_seller_id(data.get("seller_id")),
    )
    return jsonify({
        "message": "Cancellation event logged successfully",
        "action": result.action,
        "status": result.status,
    })
