"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self):
        body = {"error": self.message}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(ServiceError):
    status_code = 400


class InvalidAmount(ValidationError):
    pass


class InvalidDistribution(ValidationError):
    pass


class NotFound(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class AuthorizationError(ServiceError):
    status_code = 403


class StoreError(ServiceError):
    status_code = 500

    def __init__(self, message="Database error", field=None):
        super().__init__(message, field)
