"""Optional azure-core classifier."""

import importlib

from ..classify import Classification, _coerce_error_code, _coerce_status, classify


def azure_classifier(exc: BaseException) -> Classification:
    """
    Classify ``azure.core.exceptions`` failures.

    ServiceRequestError (request never reached the service) and
    ServiceResponseError (connection dropped while reading the response) are
    connectivity failures. HttpResponseError and everything else go through
    the default status/error-code rules.

    This helper is optional and degrades gracefully when azure-core is unavailable.
    """
    try:
        azure_exc = importlib.import_module("azure.core.exceptions")
    except Exception:
        return classify(exc)

    for name in ("ServiceRequestError", "ServiceResponseError"):
        exc_type = getattr(azure_exc, name, None)
        if exc_type is not None and isinstance(exc_type, type) and isinstance(exc, exc_type):
            return Classification(
                True,
                _coerce_status(exc),
                _coerce_error_code(exc),
                reason="connectivity",
            )

    return classify(exc)
