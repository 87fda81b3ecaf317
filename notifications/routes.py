# notifications/routes.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required, get_jwt_identity

from notifications.formatting import LoanNotification, NotificationType
from notifications.utils import recent_notifications
from services import get_services
from utils.http import chat_id_arg, json_body, parse_int

notifications_bp = Blueprint("notifications", __name__)

SAMPLE_BORROWER = "0x0000000000000000000000000000000000000001"


# -------- Operator smoke test: send a sample loan request --------
@notifications_bp.route("/test", methods=["POST"])
@jwt_required()
def send_test_notification():
    body = json_body()
    notification = LoanNotification(
        type=NotificationType.LOAN_REQUEST,
        loan_id=str(body.get("loanId") or "0"),
        requester_address=body.get("requesterAddress") or SAMPLE_BORROWER,
        requester_name=body.get("requesterName") or f"Test ({get_jwt_identity()})",
        amount=str(body.get("amount") or "100"),
        term=body.get("term") or "30 days",
        recipient_id=chat_id_arg(),
    )
    result = get_services().dispatcher.dispatch(notification)
    return jsonify({"success": result.delivered, **result.to_dict()}), 200


# -------- Recent dispatch log --------
@notifications_bp.route("", methods=["GET"])
@jwt_required()
def list_notifications():
    limit = min(parse_int(request.args.get("limit"), "limit", positive=True) or 50, 500)
    return jsonify(recent_notifications(limit)), 200
