from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from pydantic import ValidationError

from restgate.domain.models import Procedure, ProcedureKind
from restgate.errors import ProcedureError
from restgate.procedures.router import ProcedureSource, as_procedures
from restgate.schema.types import Schema

logger = logging.getLogger(__name__)

CallerFn = Callable[[ProcedureKind, str, Any, Any], Union[Any, Awaitable[Any]]]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ProcedureCaller:
    """
    In-process procedure invocation.

    Validates the input against the procedure's input schema, runs the
    resolver (sync or async) as ``resolver(input, ctx)``, then validates and
    dumps the output. Input problems raise BAD_REQUEST with the
    ``ValidationError`` as cause; output problems are a bug in the procedure
    and raise INTERNAL_SERVER_ERROR.
    """

    def __init__(self, procedures: ProcedureSource) -> None:
        self._procedures: dict[tuple[str, str], tuple[Procedure, Schema, Schema]] = {}
        for proc in as_procedures(procedures):
            d = proc.descriptor
            self._procedures[(d.kind, d.name)] = (proc, Schema.of(d.input), Schema.of(d.output))

    async def __call__(self, kind: ProcedureKind, name: str, input: Any, ctx: Any) -> Any:
        entry = self._procedures.get((kind, name))
        if entry is None:
            raise ProcedureError("NOT_FOUND", f"No {kind} procedure named '{name}'")
        proc, input_schema, output_schema = entry

        if proc.resolver is None:
            raise ProcedureError("METHOD_NOT_SUPPORTED", f"Procedure '{name}' has no resolver")

        try:
            value = input_schema.validate(input)
        except ValidationError as e:
            raise ProcedureError("BAD_REQUEST", "Input validation failed", cause=e) from e

        result = await maybe_await(proc.resolver(value, ctx))

        try:
            validated = output_schema.validate(result)
            return output_schema.dump(validated)
        except ValidationError as e:
            logger.error("Output of %s.%s failed validation: %s", kind, name, e)
            raise ProcedureError("INTERNAL_SERVER_ERROR", "Output validation failed", cause=e) from e
