#  Copyright 2021 Amazon.com, Inc. or its affiliates. All Rights Reserved.
#
#  Licensed under the Apache License, Version 2.0 (the "License"). You may not use this file except in compliance
#  with the License. A copy of the License is located at
#
#  http://aws.amazon.com/apache2.0/
#
#  or in the "license" file accompanying this file. This file is distributed on an "AS IS" BASIS, WITHOUT WARRANTIES
#  OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific language governing permissions
#  and limitations under the License.
import logging

from . import logging_util


def positive_int(x):
    """Parse a strictly positive integer.

    Args:
        x (str)

    Returns:
        int

    Raises:
        ValueError: If `x` is not an integer or is not positive.
    """

    value = int(x)
    if value < 1:
        raise ValueError(f"expect a positive integer, got {x}")
    return value


def non_negative_float(x):
    """Parse a float that is at least zero.

    Raises:
        ValueError: If `x` is not a float or is negative.
    """

    value = float(x)
    if value < 0:
        raise ValueError(f"expect a non-negative float, got {x}")
    return value


def add_verbose_level_argument(parser, default=1):
    """Add the shared `--verbose-level` option to `parser`."""

    levels = ", ".join(
        f"{k} for {logging.getLevelName(v)}" for k, v in logging_util.log_levels.items()
    )
    parser.add_argument(
        "--verbose-level",
        type=int,
        choices=logging_util.log_levels.keys(),
        default=default,
        metavar="INT",
        help=f"the verbose level, {levels}. Default {default}",
    )
