"""stack_deployer.parameters — Merge config-file parameters with overrides."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from .models import Parameter


def merge_parameters(
    base: Optional[Iterable[Parameter]],
    overrides: Optional[Mapping[str, str]],
) -> List[Parameter]:
    """Combine a config parameter list with caller overrides.

    Every key appears once. Overrides win over the config file, and a later
    entry wins over an earlier one with the same key. Keys keep the position
    of their first appearance, so the result is deterministic for a given
    input pair.
    """
    merged: Dict[str, str] = {}
    for key, value in base or ():
        merged[key] = value
    for key, value in (overrides or {}).items():
        merged[key] = value
    return list(merged.items())


def _to_cfn_parameters(parameters: Iterable[Parameter]) -> List[Dict[str, str]]:
    return [{"ParameterKey": key, "ParameterValue": value} for key, value in parameters]
