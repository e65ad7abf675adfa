"""error taxonomy shared by every buteco component"""


class ButecoError(Exception):
    """base class; message is meant to be shown to the user as-is"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ButecoError):
    """bad input: blank names, negative prices, quantity < 1, illegal transitions"""


class NotFoundError(ButecoError):
    """referenced entity does not exist"""


class AuthorizationError(ButecoError):
    """role check failed, bad credentials or a self-protection guard tripped"""


class ConflictError(ButecoError):
    """operation collides with existing state (eg. first-admin bootstrap)"""
