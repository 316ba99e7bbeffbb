# Copyright 2011-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License"); you
# may not use this file except in compliance with the License.  You
# may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.  See the License for the specific language governing
# permissions and limitations under the License.


"""Functions and constants common to multiple mongowire modules."""
from __future__ import annotations

from collections import abc
from typing import Any, Callable, Optional

from mongowire.errors import ConfigurationError

# The default port of a mongod or mongos.
DEFAULT_PORT = 27017

# Defaults for legacy servers, which never advertise their limits over
# OP_REPLY.
MAX_BSON_SIZE = 16 * (1024**2)
MAX_MESSAGE_SIZE = 3 * MAX_BSON_SIZE

# Bounds of the int32 fields in a message body.
MAX_INT32 = 2**31 - 1
MIN_INT32 = -(2**31)

# Seconds to wait for a TCP connection to be established.
CONNECT_TIMEOUT = 20.0


def raise_config_error(key: str, dummy: Any) -> Any:
    """Raise ConfigurationError with the given key name."""
    raise ConfigurationError(f"Unknown option {key}")


def validate_boolean(option: str, value: Any) -> bool:
    """Validates that 'value' is True or False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value not in ("true", "false"):
            raise ConfigurationError(f"The value of {option} must be 'true' or 'false'")
        return value == "true"
    raise TypeError(f"Wrong type for {option}, value must be a boolean")


def validate_integer(option: str, value: Any) -> int:
    """Validates that 'value' is an integer (or string representation)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    elif isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"The value of {option} must be an integer") from None
    raise TypeError(f"Wrong type for {option}, value must be an integer")


def validate_positive_integer(option: str, value: Any) -> int:
    """Validate that 'value' is a positive integer, which does not include 0."""
    val = validate_integer(option, value)
    if val <= 0:
        raise ConfigurationError(f"The value of {option} must be a positive integer")
    return val


def validate_non_negative_integer(option: str, value: Any) -> int:
    """Validate that 'value' is a positive integer or 0."""
    val = validate_integer(option, value)
    if val < 0:
        raise ConfigurationError(f"The value of {option} must be a non negative integer")
    return val


def validate_int32(option: str, value: Any) -> int:
    """Validates that 'value' is an integer that fits in a signed int32."""
    val = validate_integer(option, value)
    if not MIN_INT32 <= val <= MAX_INT32:
        raise ConfigurationError(f"The value of {option} must fit in a 32-bit signed integer")
    return val


def validate_non_negative_int32(option: str, value: Any) -> int:
    """Validates that 'value' is a non negative integer that fits in an int32."""
    val = validate_int32(option, value)
    if val < 0:
        raise ConfigurationError(f"The value of {option} must be a non negative integer")
    return val


def validate_positive_float(option: str, value: Any) -> float:
    """Validates that 'value' is a float, or can be converted to one, and is
    positive.
    """
    errmsg = f"{option} must be an integer or float"
    try:
        value = float(value)
    except ValueError:
        raise ValueError(errmsg) from None
    except TypeError:
        raise TypeError(errmsg) from None

    # One billion stands in for infinity.
    if not 0 < value < 1e9:
        raise ValueError(f"{option} must be greater than 0 and less than one billion")
    return value


def validate_timeout_or_none(option: str, value: Any) -> Optional[float]:
    """Validates a timeout specified in milliseconds returning
    a value in floating point seconds.
    """
    if value is None:
        return value
    return validate_positive_float(option, value) / 1000.0


def validate_document_class(option: str, value: Any) -> Any:
    """Validate the document_class option."""
    if not (isinstance(value, type) and issubclass(value, abc.MutableMapping)):
        raise TypeError(
            f"{option} must be dict or a subclass of collections.abc.MutableMapping"
        )
    return value


# Dictionary where keys are the names of keyword-only options for the
# Connection constructor and values are functions that validate user-input
# values for those options.
VALIDATORS: dict[str, Callable[[Any, Any], Any]] = {
    "connecttimeoutms": validate_timeout_or_none,
    "sockettimeoutms": validate_timeout_or_none,
    "document_class": validate_document_class,
    "tz_aware": validate_boolean,
    "maxmessagesize": validate_positive_integer,
}


def validate(option: str, value: Any) -> tuple[str, Any]:
    """Generic validation function."""
    lower = option.lower()
    validator = VALIDATORS.get(lower, raise_config_error)
    value = validator(option, value)
    return lower, value
