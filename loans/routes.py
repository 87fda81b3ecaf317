# loans/routes.py
import logging

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from errors import LedgerWriteError, LendingServiceError
from loans.actions import (
    format_auto_repayment_check,
    mark_loan_as_defaulted,
    notify_default,
    prepare_repayment_transaction,
    send_grace_period_warning,
)
from loans.auto_repayment import check_loan_for_auto_repayment, get_loans_needing_auto_repayment
from loans.default_detection import check_loan_default, get_defaulted_loans
from loans.grace_period import (
    attempt_collection_after_grace_period,
    check_loan_grace_period,
    classify_collection,
    get_loans_in_grace_period,
)
from loans.reads import read_loan_snapshot
from services import get_services
from utils.http import BadRequest, chat_id_arg, json_body, parse_int

logger = logging.getLogger(__name__)

loans_bp = Blueprint("loans", __name__)
admin_bp = Blueprint("loans_admin", __name__)

DEFAULT_ACTIONS = ("check", "mark", "notify")
GRACE_ACTIONS = ("check", "notify", "collect")


def _loan_id(value, required=False):
    return parse_int(value, "loanId", required=required, positive=True)


def _action(allowed):
    action = request.args.get("action", "check")
    if action not in allowed:
        raise BadRequest(f"Unknown action {action!r}; expected one of {', '.join(allowed)}")
    return action


def _batch(result, key="loans", items=None):
    return {
        "success": True,
        "block": str(result.block.number),
        "count": result.count if items is None else len(items),
        key: items if items is not None else [i.to_dict() for i in result.items],
        "failures": [f.to_dict() for f in result.failures],
    }


# -------- Default detection --------
@loans_bp.route("/defaults", methods=["GET"])
@jwt_required()
def check_defaults():
    action = _action(DEFAULT_ACTIONS)
    loan_id = _loan_id(request.args.get("loanId"))
    chat_id = chat_id_arg()
    svc = get_services()
    ledger = svc.ledger
    logger.info("Default check (%s) by %s for loan %s", action, get_jwt_identity(), loan_id or "*")

    if loan_id is not None:
        if action == "mark":
            return jsonify(mark_loan_as_defaulted(ledger, loan_id).to_dict()), 200
        loan = check_loan_default(ledger, loan_id)
        if loan is None:
            return jsonify({"success": False, "loanId": str(loan_id),
                            "message": "Loan not defaulted or already handled"}), 200
        if action == "notify":
            sent = notify_default(ledger, svc.dispatcher, loan, chat_id)
            return jsonify({"success": True, "message": "Default notifications sent",
                            "loan": loan.to_dict(), "notifications": [n.to_dict() for n in sent]}), 200
        return jsonify({"success": True, "loan": loan.to_dict()}), 200

    result = get_defaulted_loans(ledger)
    if action == "check":
        return jsonify(_batch(result)), 200

    outcomes = []
    for loan in result.items:
        if action == "mark":
            outcomes.append(mark_loan_as_defaulted(ledger, loan.loan_id).to_dict())
        else:
            sent = notify_default(ledger, svc.dispatcher, loan, chat_id)
            outcomes.append({"loanId": str(loan.loan_id), "success": all(n.delivered for n in sent),
                             "notifications": [n.to_dict() for n in sent]})
    return jsonify(_batch(result, key="results", items=outcomes)), 200


@loans_bp.route("/defaults", methods=["POST"])
@jwt_required()
def mark_default():
    body = json_body()
    loan_id = _loan_id(body.get("loanId"), required=True)
    svc = get_services()
    ledger = svc.ledger

    # snapshot before marking; afterwards the loan is no longer Funded
    try:
        snapshot = check_loan_default(ledger, loan_id)
    except LendingServiceError as e:
        logger.warning("Pre-mark default snapshot for loan %s failed: %s", loan_id, e)
        snapshot = None

    result = mark_loan_as_defaulted(ledger, loan_id)
    payload = result.to_dict()
    if result.success and result.transaction_hash and snapshot is not None:
        sent = notify_default(ledger, svc.dispatcher, snapshot, chat_id_arg())
        payload["notifications"] = [n.to_dict() for n in sent]
    return jsonify(payload), 200


# -------- Grace period --------
@loans_bp.route("/grace-period", methods=["GET"])
@jwt_required()
def check_grace_period():
    action = _action(GRACE_ACTIONS)
    loan_id = _loan_id(request.args.get("loanId"))
    chat_id = chat_id_arg()
    svc = get_services()
    ledger = svc.ledger

    if loan_id is not None:
        if action == "collect":
            return jsonify(attempt_collection_after_grace_period(ledger, loan_id).to_dict()), 200
        check = check_loan_grace_period(ledger, loan_id)
        if check is None:
            return jsonify({"success": False, "loanId": str(loan_id),
                            "message": "Loan not in grace period"}), 200
        payload = {"success": True, "loan": check.to_dict()}
        if action == "notify":
            payload["notification"] = send_grace_period_warning(svc.dispatcher, check, chat_id).to_dict()
        return jsonify(payload), 200

    result = get_loans_in_grace_period(ledger)
    if action == "check":
        return jsonify(_batch(result)), 200
    if action == "collect":
        return jsonify(_batch(result, key="results", items=[classify_collection(c).to_dict() for c in result.items])), 200

    outcomes = []
    for check in result.items:
        sent = send_grace_period_warning(svc.dispatcher, check, chat_id)
        outcomes.append({"loanId": str(check.loan_id), "success": sent.delivered, "notification": sent.to_dict()})
    return jsonify(_batch(result, key="results", items=outcomes)), 200


@loans_bp.route("/grace-period", methods=["POST"])
@jwt_required()
def collect_after_grace_period():
    loan_id = _loan_id(json_body().get("loanId"), required=True)
    attempt = attempt_collection_after_grace_period(get_services().ledger, loan_id)
    return jsonify(attempt.to_dict()), 200


# -------- Auto-repayment --------
def _repayment_entry(check):
    return {
        "check": check.to_dict(),
        "transaction": prepare_repayment_transaction(check).to_dict(),
        "summary": format_auto_repayment_check(check),
    }


@loans_bp.route("/repayments", methods=["GET"])
@jwt_required()
def check_repayments():
    result = get_loans_needing_auto_repayment(get_services().ledger)
    return jsonify(_batch(result, items=[_repayment_entry(c) for c in result.items])), 200


@loans_bp.route("/repayments", methods=["POST"])
@jwt_required()
def check_repayment():
    loan_id = _loan_id(json_body().get("loanId"), required=True)
    check = check_loan_for_auto_repayment(get_services().ledger, loan_id)
    if check is None:
        return jsonify({"success": False, "loanId": str(loan_id),
                        "message": "Loan does not need repayment"}), 200
    return jsonify({"success": True, **_repayment_entry(check)}), 200


# -------- Snapshot --------
@loans_bp.route("/<loan_id>", methods=["GET"])
@jwt_required()
def get_loan(loan_id):
    loan, block = read_loan_snapshot(get_services().ledger, _loan_id(loan_id, required=True))
    return jsonify({"success": True, "block": str(block.number), "timestamp": str(block.timestamp),
                    "loan": loan.to_dict()}), 200


# -------- Admin / testing deadline overrides --------
_DEADLINE_SETTERS = (
    ("vouchingDeadline", "set_vouching_deadline"),
    ("repaymentDeadline", "set_repayment_deadline"),
    ("gracePeriod", "set_grace_period"),
)


@admin_bp.route("/loans/<loan_id>/deadlines", methods=["POST"])
@jwt_required()
def override_deadlines(loan_id):
    loan_id = _loan_id(loan_id, required=True)
    body = json_body()
    requested = [(key, setter) for key, setter in _DEADLINE_SETTERS if body.get(key) is not None]
    if not requested:
        raise BadRequest("Provide at least one of vouchingDeadline, repaymentDeadline, gracePeriod")

    values = {key: parse_int(body[key], key, required=True) for key, _ in requested}

    ledger = get_services().ledger
    results = {}
    for key, setter in requested:
        value = values[key]
        try:
            receipt = ledger.wait_for_receipt(getattr(ledger, setter)(loan_id, value))
            results[key] = {"success": True, "transactionHash": receipt["transactionHash"]}
        except LedgerWriteError as e:
            logger.warning("Admin %s for loan %s failed: %s", setter, loan_id, e)
            results[key] = {"success": False, "error": str(e)}
    logger.info("Deadline override on loan %s by %s: %s", loan_id, get_jwt_identity(), sorted(results))
    return jsonify({"success": all(r["success"] for r in results.values()), "loanId": str(loan_id),
                    "results": results}), 200
