from __future__ import annotations

from typing import Any, Dict, Optional


class JpiError(Exception):
    """Base exception for all jpikit errors."""

    def __init__(self, message: str, *args: Any, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            *args: Additional positional arguments for Exception
            **kwargs: Additional error information
        """
        self.message = message
        self.details: Dict[str, Any] = dict(kwargs.pop("details", {}))
        self.details.update(kwargs)
        super().__init__(message, *args)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ConfigurationError(JpiError):
    """Exception raised for invalid or late role, dependency or metadata declarations."""

    def __init__(
            self, message: str, *args: Any, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            config_key: The configuration key or role that caused the error.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, *args, details=details, **kwargs)
        self.config_key = config_key


class ResolutionError(JpiError):
    """Exception raised when a role's dependencies cannot be resolved.

    The message always names the offending module coordinate and the role
    whose resolution failed.
    """

    def __init__(
            self,
            message: str,
            *args: Any,
            module: Optional[str] = None,
            role: Optional[str] = None,
            **kwargs: Any
    ) -> None:
        """Initialize a ResolutionError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            module: Coordinate of the module that failed to resolve.
            role: Name of the role being resolved.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if module:
            details["module"] = module
        if role:
            details["role"] = role
        super().__init__(message, *args, details=details, **kwargs)
        self.module = module
        self.role = role

    def __str__(self) -> str:
        """String representation."""
        parts = []
        if self.module and self.module not in self.message:
            parts.append(f"module: {self.module}")
        if self.role and self.role not in self.message:
            parts.append(f"role: {self.role}")
        if parts:
            return f"{self.message} ({', '.join(parts)})"
        return super().__str__()


class AssemblyError(JpiError):
    """Exception raised when writing an archive fails."""

    def __init__(
            self, message: str, *args: Any, path: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize an AssemblyError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            path: The archive path being written.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, *args, details=details, **kwargs)
        self.path = path
