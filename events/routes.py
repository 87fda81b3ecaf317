# events/routes.py
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from errors import EventDecodeError
from services import get_services
from utils.http import BadRequest, chat_id_arg, json_body, parse_int

logger = logging.getLogger(__name__)

events_bp = Blueprint("events", __name__)


# -------- Process a block range (cron / manual) --------
@events_bp.route("", methods=["GET"])
@jwt_required()
def process_event_range():
    from_block = parse_int(request.args.get("fromBlock"), "fromBlock")
    to_block = parse_int(request.args.get("toBlock"), "toBlock")
    chat_id = chat_id_arg()
    if from_block is not None and from_block < 0:
        raise BadRequest("fromBlock must not be negative")
    if from_block is not None and to_block is not None and to_block < from_block:
        raise BadRequest("toBlock must be >= fromBlock")

    processor = get_services().event_processor()
    if from_block is None:
        result = processor.poll(current_app.config.get("EVENT_LOOKBACK_BLOCKS", 1000),
                                to_block=to_block, recipient_id=chat_id)
    else:
        result = processor.listen_to_events(from_block, "latest" if to_block is None else to_block, chat_id)
    return jsonify({"success": True, **result.to_dict()}), 200


# -------- Webhook-style single event --------
@events_bp.route("", methods=["POST"])
@jwt_required()
def process_single_event():
    body = json_body()
    event_name = body.get("eventName")
    args = body.get("args")
    if not event_name or not isinstance(args, dict):
        raise BadRequest("Missing required fields: eventName, args")

    try:
        outcome = get_services().event_processor().process_event(event_name, args, chat_id_arg())
    except EventDecodeError as e:
        raise BadRequest(str(e)) from e
    return jsonify({"success": outcome.success, **outcome.to_dict()}), 200
