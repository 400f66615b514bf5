"""
Query engine errors.

Every message here ends up in a language-model prompt, so it must stay
generic: no SQL, no table names, no driver text.
"""

from typing import Optional

CROSS_ORG_DENIED = "Cross-org queries require super user access"
GENERIC_FAILURE = "Failed to execute query"


class QueryError(Exception):
    """Base class. `message` is what the caller is allowed to see."""

    default_message = GENERIC_FAILURE

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AccessDenied(QueryError):
    default_message = "Access denied"


class MissingOrgScope(QueryError):
    default_message = "No organization specified"


class UnknownTemplate(QueryError):
    def __init__(self, template: str):
        self.template = template
        super().__init__(f"Unknown query template: {template}")


class InvalidParameters(QueryError):
    default_message = "Invalid query parameters"


class NotFound(QueryError):
    default_message = "No matching record found"


class QueryTimeout(QueryError):
    default_message = "Query timed out"


class StoreFailure(QueryError):
    """Wraps a data store error. The original stays on __cause__ for the logs."""

    default_message = GENERIC_FAILURE
