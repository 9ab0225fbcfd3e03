"""Domain errors surfaced by the API as {success: false, message} envelopes."""


class WelldashError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class WidgetNotFound(WelldashError):
    status_code = 404
    message = "Widget not found"

    def __init__(self, widget_id: int | None = None):
        super().__init__()
        self.widget_id = widget_id


class DeviceTypeNotFound(WelldashError):
    status_code = 404
    message = "Device type not found"


class AuthError(WelldashError):
    status_code = 401
    message = "Authentication required"


class Forbidden(WelldashError):
    status_code = 403
    message = "Access denied"


class InvalidRequest(WelldashError):
    status_code = 400
    message = "Invalid request"
