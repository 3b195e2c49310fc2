from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Mapping


@contextmanager
def scoped_environ(overrides: Mapping[str, str]) -> Iterator[dict[str, str | None]]:
    """Override process environment variables for the duration of the block.

    Yields the original values (None when unset). On exit every variable is
    restored, or removed again if it was not set before, even when the block
    raises.
    """
    originals: dict[str, str | None] = {name: os.environ.get(name) for name in overrides}
    try:
        for name, value in overrides.items():
            os.environ[name] = value
        yield dict(originals)
    finally:
        for name, original in originals.items():
            if original is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = original
