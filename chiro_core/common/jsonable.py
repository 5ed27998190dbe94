# chiro_core/common/jsonable.py
from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder

_encoder = DjangoJSONEncoder()


def to_jsonable(value):
    """
    Deep-convert a value for a JSONField. Decimals become strings so cents stay
    exact; dates, datetimes and UUIDs become ISO/hex strings.
    """
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return _encoder.default(value)
