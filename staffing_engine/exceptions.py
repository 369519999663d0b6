"""
Engine exception types

Defines the failure taxonomy shared by the gateway, the fetch orchestrator and
the mutation reconciler. Transport failures and invalid mutations are
recoverable and are normally turned into result values; an expired session is
not, and always propagates to the caller.
"""

from datetime import datetime
from typing import Dict, Any, Optional


class EngineException(Exception):
    """Base exception for the aggregation engine"""

    def __init__(self, message: str, error_code: str = "ENGINE_ERROR",
                 component: str = "unknown", details: Optional[Dict[str, Any]] = None):
        """Initialise the exception

        Args:
            message: human readable message
            error_code: machine readable code
            component: component that raised it
            details: extra context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.component = component
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON friendly dict"""
        return {
            'error_code': self.error_code,
            'message': self.message,
            'component': self.component,
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }


class GatewayException(EngineException):
    """Resource gateway failure"""

    def __init__(self, message: str, error_code: str = "GATEWAY_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, "ResourceGateway", details)


class TransportFailure(GatewayException):
    """A single gateway call failed at the network or HTTP level"""

    def __init__(self, collection: str, message: str, status: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.collection = collection
        self.status = status
        error_details = details or {}
        error_details.update({
            'collection': collection,
            'status': status
        })
        super().__init__(
            f"Request for {collection} failed: {message}",
            "TRANSPORT_FAILURE",
            error_details
        )


class AuthExpiredException(GatewayException):
    """The gateway rejected the session credentials.

    The engine never recovers from this one; it is re-raised unchanged so the
    session layer can force re-authentication.
    """

    def __init__(self, message: str = "Session expired", status: int = 401,
                 details: Optional[Dict[str, Any]] = None):
        self.status = status
        error_details = details or {}
        error_details.update({'status': status})
        super().__init__(message, "AUTH_EXPIRED", error_details)


class InvalidMutationException(EngineException):
    """Mutation targets an unknown record or an undefined transition"""

    def __init__(self, collection: str, record_id: str, action: str, reason: str,
                 details: Optional[Dict[str, Any]] = None):
        self.collection = collection
        self.record_id = record_id
        self.action = action
        self.reason = reason
        error_details = details or {}
        error_details.update({
            'collection': collection,
            'record_id': record_id,
            'action': action
        })
        super().__init__(
            f"Cannot {action} {collection}/{record_id}: {reason}",
            "INVALID_MUTATION",
            "MutationReconciler",
            error_details
        )


class ConfigurationException(EngineException):
    """Invalid engine configuration"""

    def __init__(self, config_key: str, message: str,
                 details: Optional[Dict[str, Any]] = None):
        self.config_key = config_key
        error_details = details or {}
        error_details.update({'config_key': config_key})
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            "CONFIGURATION_ERROR",
            "EngineConfig",
            error_details
        )


class UnknownViewException(EngineException):
    """Requested dashboard view is not registered"""

    def __init__(self, view_name: str, details: Optional[Dict[str, Any]] = None):
        self.view_name = view_name
        error_details = details or {}
        error_details.update({'view': view_name})
        super().__init__(
            f"Unknown dashboard view: {view_name}",
            "UNKNOWN_VIEW",
            "DashboardCoordinator",
            error_details
        )


def create_error_response(exception: EngineException) -> Dict[str, Any]:
    """Build the standard error envelope

    Args:
        exception: engine exception

    Returns:
        Dict[str, Any]: error envelope
    """
    return {
        'success': False,
        'error': exception.message,
        'error_code': exception.error_code,
        'details': exception.to_dict(),
        'timestamp': datetime.now().isoformat()
    }


def is_recoverable_error(exception: BaseException) -> bool:
    """Whether the engine may absorb this error and continue with partial data

    Args:
        exception: raised exception

    Returns:
        bool: True when recoverable
    """
    if isinstance(exception, AuthExpiredException):
        return False
    if isinstance(exception, EngineException):
        return exception.error_code in {
            'TRANSPORT_FAILURE',
            'GATEWAY_ERROR',
            'INVALID_MUTATION',
        }
    return False
