# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import re
from typing import Any, Iterable

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


_CONVERTERS = {
    "camel_to_snake": camel_to_snake,
    "snake_to_camel": snake_to_camel,
}


def convert_keys(data: Any, direction: str, preserve: Iterable[str] = ()) -> Any:
    """
    Recursively converts dictionary keys between camelCase and snake_case.

    Args:
        data: A dict, list or scalar.
        direction: "camel_to_snake" or "snake_to_camel".
        preserve: Keys (in either spelling) whose values are copied verbatim.
            Used for maps keyed by user data, such as a community's slots.

    Returns:
        A converted copy of `data`.
    """
    if direction not in _CONVERTERS:
        raise ValueError(f"Unknown conversion direction: {direction}")
    convert = _CONVERTERS[direction]
    preserved = set(preserve)
    preserved |= {camel_to_snake(key) for key in preserved}
    preserved |= {snake_to_camel(key) for key in preserved}
    return _convert(data, convert, preserved)


def _convert(data: Any, convert, preserved: set) -> Any:
    if isinstance(data, dict):
        converted = {}
        for key, value in data.items():
            new_key = convert(key) if isinstance(key, str) else key
            if key in preserved:
                converted[new_key] = (
                    dict(value) if isinstance(value, dict) else value
                )
            else:
                converted[new_key] = _convert(value, convert, preserved)
        return converted
    if isinstance(data, list):
        return [_convert(item, convert, preserved) for item in data]
    return data
