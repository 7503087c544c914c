"""Shared types for the fesync package."""

from typing import Any

Row = dict[str, Any]
Params = tuple | list | dict
ParamsList = list[tuple] | list[list]
