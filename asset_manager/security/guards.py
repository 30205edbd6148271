from __future__ import annotations

from collections.abc import Iterable
from typing import Callable

from flask import Request

from .denials import Denial

Guard = Callable[[Request], "Denial | None"]


def run_guards(guards: Iterable[Guard], req: Request) -> Denial | None:
    """
    Run guards in order. The first one that returns a Denial stops the chain;
    None from every guard means the request may continue.
    """
    for guard in guards:
        denial = guard(req)
        if denial is not None:
            return denial
    return None
