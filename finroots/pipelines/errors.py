class CrmError(Exception):
    """Base class for errors caused by the caller's input or permissions."""


class CrmValidationError(CrmError):
    pass


class CrmPermissionError(CrmError):
    pass


class CrmNotFoundError(CrmError, LookupError):
    pass
