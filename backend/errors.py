"""Error taxonomy shared by the services and the HTTP layer."""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"success": False, "message": self.message}


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, errors=None, message=None):
        super().__init__(message)
        # list of {"field", "message", "value"}
        self.errors = list(errors or [])

    @classmethod
    def single(cls, field, message, value=None):
        return cls([{"field": field, "message": message, "value": value}])

    def to_dict(self):
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class MissingLocation(ApiError):
    status_code = 400
    default_message = "Location is required"


class UnknownCategory(ApiError):
    status_code = 400
    default_message = "Invalid category"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Access denied. No token provided."


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access denied"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class GenerationFailed(ApiError):
    status_code = 502
    default_message = "Failed to generate itinerary"


class UpstreamUnavailable(ApiError):
    status_code = 503
    default_message = "Upstream service unavailable"
