from rest_framework import serializers
from rest_framework.exceptions import ValidationError


def _query_param(request, name, field):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return field.to_internal_value(raw)
    except ValidationError as exc:
        raise ValidationError({name: exc.detail})


def datetime_param(request, name):
    """Timezone-aware datetime from the query string; naive values use the current timezone."""
    return _query_param(request, name, serializers.DateTimeField())


def uuid_param(request, name):
    return _query_param(request, name, serializers.UUIDField())
