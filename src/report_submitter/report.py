# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.report module

The Report value submitted to the contract.

A Report is validated once, at construction. Anything that reaches the
encoder is already well formed: exactly 6 unsigned sensor readings, exactly
2 signed location coordinates, all within 256-bit range. Nothing is ever
truncated or padded to fit.
"""

from collections import namedtuple

from report_submitter.errors import ConstructionError

SENSOR_COUNT = 6
LOCATION_COUNT = 2

UINT256_MAX = 2**256 - 1
INT256_MIN = -(2**255)
INT256_MAX = 2**255 - 1


def _check_int(name, value, low, high):
    # bool is an int subclass but never a valid reading
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConstructionError(f"{name} must be an integer, got {type(value).__name__}")
    if value < low or value > high:
        raise ConstructionError(f"{name}={value} is outside [{low}, {high}]")
    return value


def _check_array(name, values, length, low, high):
    if isinstance(values, (str, bytes)):
        raise ConstructionError(f"{name} must be a sequence of integers")
    try:
        values = tuple(values)
    except TypeError as exc:
        raise ConstructionError(f"{name} must be a sequence of integers") from exc
    if len(values) != length:
        raise ConstructionError(
            f"{name} must have exactly {length} elements, got {len(values)}"
        )
    return tuple(
        _check_int(f"{name}[{i}]", v, low, high) for i, v in enumerate(values)
    )


def _check_text(name, value):
    if not isinstance(value, str):
        raise ConstructionError(f"{name} must be a str, got {type(value).__name__}")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ConstructionError(f"{name} is not valid UTF-8 text: {exc.reason}") from exc
    return value



class Report(namedtuple(
    "Report", ["server_id", "user_code", "timestamp", "sensors", "location"]
)):
    """An immutable, validated sensor report.

    Fields:
        server_id: reporting server identifier (UTF-8 text).
        user_code: user code (UTF-8 text).
        timestamp: unsigned 256-bit integer.
        sensors: tuple of exactly 6 unsigned 256-bit integers.
        location: tuple of exactly 2 signed 256-bit integers.

    Raises:
        ConstructionError: on any malformed field.
    """

    __slots__ = ()

    def __new__(cls, server_id, user_code, timestamp, sensors, location):
        return super().__new__(
            cls,
            _check_text("server_id", server_id),
            _check_text("user_code", user_code),
            _check_int("timestamp", timestamp, 0, UINT256_MAX),
            _check_array("sensors", sensors, SENSOR_COUNT, 0, UINT256_MAX),
            _check_array("location", location, LOCATION_COUNT, INT256_MIN, INT256_MAX),
        )

    def _replace(self, **kwargs):
        # namedtuple's _replace bypasses __new__; route it back through validation
        return type(self)(**dict(self._asdict(), **kwargs))

    def as_abi_args(self):
        """Ordered arguments for (string,string,uint256,uint256[6],int256[2])."""
        return [
            self.server_id,
            self.user_code,
            self.timestamp,
            list(self.sensors),
            list(self.location),
        ]
