"""Errors raised by the budget store and mapped to HTTP responses by the app."""


class BudgetError(Exception):
    status_code = 400
    message = "Something went wrong"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


class AuthenticationError(BudgetError):
    status_code = 401
    message = "Not authenticated"


class ValidationError(BudgetError):
    status_code = 400
    message = "Invalid input"


class NotFoundError(BudgetError):
    status_code = 404
    message = "Not found"


class BackendError(BudgetError):
    """A database read or write failed. The message stays generic."""

    status_code = 500
    message = "The operation could not be completed, please try again"
