# utils/http.py
from flask import request


class BadRequest(ValueError):
    """Invalid operator input; rendered as a 400 by the app error handler."""


def parse_int(value, name: str, required: bool = False, positive: bool = False):
    if value is None or value == "":
        if required:
            raise BadRequest(f"Missing required field: {name}")
        return None
    try:
        number = int(str(value).strip(), 0)
    except ValueError:
        raise BadRequest(f"Invalid {name}: {value!r}") from None
    if positive and number <= 0:
        raise BadRequest(f"Invalid {name}: {value!r}")
    return number


def json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def chat_id_arg():
    """Recipient override from ?chatId= or the JSON body."""
    return request.args.get("chatId") or json_body().get("chatId")
