import datetime
import json
import logging

REDACTED = "***REDACTED***"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per log line.

    Values under secret-bearing keys are redacted at any depth, in dict
    messages as well as in mapping-style args. Domain identifiers passed
    through `extra=` (order number, product id, webhook event id, user id)
    are lifted to top-level keys so that log search can filter on them.
    """

    SENSITIVE_KEYS = frozenset({
        "password", "token", "access", "refresh", "authorization",
        "secret", "client_secret", "signature", "stripe_signature",
        "payment_token", "card", "cvc", "api_key",
    })

    CONTEXT_FIELDS = ("user_id", "order_id", "order_number", "product_id", "event_id")

    def _scrub(self, data):
        if isinstance(data, dict):
            return {
                k: REDACTED if str(k).lower() in self.SENSITIVE_KEYS else self._scrub(v)
                for k, v in data.items()
            }
        if isinstance(data, (list, tuple)):
            return type(data)(self._scrub(i) for i in data)
        return data

    def format(self, record):
        if isinstance(record.msg, dict):
            record.msg = self._scrub(record.msg)
        if isinstance(record.args, dict):
            record.args = self._scrub(record.args)

        payload = {
            "ts": datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = str(value)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)
