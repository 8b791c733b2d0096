from kubernetes.client.exceptions import ApiException


class EpgOperatorException(Exception):
    _code: int | None = None

    def __init__(self, message, code: int | None = None):
        super().__init__(message)
        self._code = code

    @property
    def code(self):
        return self._code


class FabricError(EpgOperatorException):
    """Transport or protocol failure reported by the fabric controller."""

    def __init__(self, message, status_code: int | None = None):
        super().__init__(message, status_code)

    @property
    def status_code(self) -> int | None:
        return self._code


class FabricAuthError(FabricError):
    pass


class BootstrapError(EpgOperatorException):
    pass


class ClusterApiError(EpgOperatorException):
    def __init__(self, message, cause: ApiException | None = None):
        super().__init__(message, cause.status if cause is not None else None)
        self.cause = cause


class ReconcileError(EpgOperatorException):
    def __init__(self, step: str, cause: Exception):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause


def is_not_found(e: Exception) -> bool:
    return isinstance(e, ApiException) and e.status == 404
