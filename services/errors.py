class ServiceError(Exception):
    """Base class for errors raised by the service layer."""


class NotFoundError(ServiceError):
    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class DuplicateKeyError(ServiceError):
    pass


class ForbiddenError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


class CacheError(ServiceError):
    pass


class DeadlineExceeded(ServiceError):
    pass


class AuthenticationError(ServiceError):
    pass
