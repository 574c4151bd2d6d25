from __future__ import annotations

from typing import Optional


class SetupError(Exception):
    """Base class for every failure that terminates a run."""

    exit_code = 1
    advise = False

    def __init__(self, message: str, *, exit_code: Optional[int] = None, advise: Optional[bool] = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
        if advise is not None:
            self.advise = advise


class ConfigurationError(SetupError):
    """A required value is missing or invalid and cannot be derived."""

    advise = True


class MissingToolsError(SetupError):
    exit_code = 2


class EnvironmentProbeError(SetupError):
    """Host introspection failed and no explicit override was given."""

    exit_code = 5
    advise = True


class EnvironmentProbeTimeout(EnvironmentProbeError):
    pass


class AddressError(SetupError):
    pass


class MalformedAddress(AddressError, ValueError):
    pass


class InvalidPrefixLength(AddressError, ValueError):
    pass


class TooManyClients(AddressError):
    exit_code = 4


class SubnetExhausted(AddressError):
    exit_code = 4


class ServerAddressOutOfSubnet(AddressError):
    exit_code = 12


class CmdError(SetupError, RuntimeError):
    """Raised when a subprocess command fails."""


class KeyGenerationError(CmdError):
    exit_code = 2


class PackagingError(SetupError):
    exit_code = 20


class InstallError(SetupError):
    exit_code = 21


class UnknownOption(SetupError):
    exit_code = 1
