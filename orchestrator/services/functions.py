"""Backend functions: tool definitions for the LLM and the executor that runs them.

The LLM sees the functions as JSON-schema tools (``FUNCTION_DEFINITIONS``,
passed to ``bind_tools``).  The proactivity engine builds the same
:class:`FunctionCall` objects directly.  Either way, calls end up in
:meth:`FunctionExecutor.execute`, which maps the symbolic name to an HTTP
route and normalizes the outcome into a :class:`FunctionCallResult`.

Parameters are snake_case on our side and camelCase on the wire.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from orchestrator.models import ExecutedCall, FunctionCall, FunctionCallResult
from orchestrator.services.backend_client import BackendAPIError, BackendClient
from orchestrator.services.metrics import metrics

logger = logging.getLogger(__name__)

LIST_PROCEDURES = "list_procedures"
LIST_UNITS = "list_units"
VALIDATE_PROCEDURE = "validate_procedure"
VALIDATE_UNIT = "validate_unit"
CHECK_AVAILABILITY = "check_availability"
CHECK_DUPLICATE = "check_duplicate"
CREATE_APPOINTMENT = "create_appointment"


class UnknownFunctionError(LookupError):
    """A call named a function that has no backend route."""


# ── Tool definitions (JSON schema) ───────────────────────────────────


def _schema(properties: dict[str, dict[str, str]], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_STR = {"type": "string"}

FUNCTION_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": LIST_PROCEDURES,
        "description": "List every procedure the clinic offers, with its duration.",
        "parameters": _schema({}, []),
    },
    {
        "name": LIST_UNITS,
        "description": "List every clinic unit (location) with its address.",
        "parameters": _schema({}, []),
    },
    {
        "name": VALIDATE_PROCEDURE,
        "description": "Check whether a procedure name exists in the clinic catalog.",
        "parameters": _schema(
            {"name": {**_STR, "description": "Procedure name as given by the patient"}},
            ["name"],
        ),
    },
    {
        "name": VALIDATE_UNIT,
        "description": "Check whether a unit (clinic location) name exists.",
        "parameters": _schema(
            {"name": {**_STR, "description": "Unit name as given by the patient"}},
            ["name"],
        ),
    },
    {
        "name": CHECK_AVAILABILITY,
        "description": "List the time slots of a unit on a date and whether each is available.",
        "parameters": _schema(
            {
                "unit": {**_STR, "description": "Unit name"},
                "date": {**_STR, "description": "Date as YYYY-MM-DD"},
            },
            ["unit", "date"],
        ),
    },
    {
        "name": CHECK_DUPLICATE,
        "description": "Check whether the patient already has a booking at that unit and time.",
        "parameters": _schema(
            {
                "patient_name": {**_STR, "description": "Patient full name"},
                "date_time": {**_STR, "description": "YYYY-MM-DDTHH:MM:00"},
                "unit": {**_STR, "description": "Unit name"},
                "email": {**_STR, "description": "Patient email, if known"},
            },
            ["patient_name", "date_time", "unit"],
        ),
    },
    {
        "name": CREATE_APPOINTMENT,
        "description": "Book the appointment. Only call after the patient confirmed every detail.",
        "parameters": _schema(
            {
                "patient_name": {**_STR, "description": "Patient full name"},
                "procedure": {**_STR, "description": "Procedure name"},
                "unit": {**_STR, "description": "Unit name"},
                "date_time": {**_STR, "description": "YYYY-MM-DDTHH:MM:00"},
                "email": {**_STR, "description": "Patient email, if known"},
            },
            ["patient_name", "procedure", "unit", "date_time"],
        ),
    },
]


# ── Routing ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Route:
    method: str
    path: str
    # Parameter sent as a path segment instead of a JSON body
    path_param: str | None = None


_ROUTES: dict[str, _Route] = {
    LIST_PROCEDURES: _Route("GET", "/api/functions/procedures"),
    LIST_UNITS: _Route("GET", "/api/functions/units"),
    VALIDATE_PROCEDURE: _Route("GET", "/api/procedures/validate/{}", "name"),
    VALIDATE_UNIT: _Route("GET", "/api/units/validate/{}", "name"),
    CHECK_AVAILABILITY: _Route("POST", "/api/functions/check-availability"),
    CHECK_DUPLICATE: _Route("POST", "/api/functions/check-duplicate"),
    CREATE_APPOINTMENT: _Route("POST", "/api/functions/create-appointment"),
}


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def _wire_body(arguments: dict[str, Any]) -> dict[str, Any]:
    return {_camel(k): v for k, v in arguments.items() if v not in (None, "")}


def _normalize(body: Any) -> FunctionCallResult:
    """Turn a backend envelope into a :class:`FunctionCallResult`.

    A missing ``success`` key counts as success.
    """
    if isinstance(body, dict) and ("success" in body or "data" in body):
        return FunctionCallResult(
            success=body.get("success") is not False,
            data=body.get("data"),
            error_message=body.get("errorMessage"),
        )
    return FunctionCallResult(success=True, data=body)


class FunctionExecutor:
    """Runs :class:`FunctionCall` objects against the backend."""

    def __init__(self, client: BackendClient | None = None) -> None:
        self._client = client or BackendClient()

    @property
    def client(self) -> BackendClient:
        return self._client

    def execute(self, call: FunctionCall) -> FunctionCallResult:
        """Execute one call.

        Transport failures become ``success=False`` results flagged with
        ``transport_error``; backend rejections keep the envelope's
        ``errorMessage``.  An unknown function name raises :class:`UnknownFunctionError`.
        """
        route = _ROUTES.get(call.name)
        if route is None:
            raise UnknownFunctionError(f"Function {call.name!r} is not defined")

        arguments = dict(call.arguments)
        path = route.path
        body: dict[str, Any] | None = None
        if route.path_param:
            value = str(arguments.pop(route.path_param, "") or "").strip()
            if not value:
                return FunctionCallResult(
                    success=False,
                    error_message=f"Missing parameter {route.path_param!r} for {call.name}",
                )
            path = route.path.format(quote(value, safe=""))
        elif route.method == "POST":
            body = _wire_body(arguments)

        logger.info("Executing %s → %s %s", call.name, route.method, path)
        try:
            with metrics.track("backend", call.name):
                raw = self._client.request(route.method, path, json_body=body)
        except (BackendAPIError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Function %s failed: %s", call.name, exc)
            return FunctionCallResult(
                success=False, error_message=str(exc), transport_error=True,
            )

        result = _normalize(raw)
        if not result.success:
            logger.info("Function %s returned failure: %s", call.name, result.error_message)
        return result

    def execute_all(self, calls: list[FunctionCall]) -> list[ExecutedCall]:
        """Execute *calls* sequentially, in order.

        Unknown names are logged as errors and recorded as failed results
        so the remaining calls still run.
        """
        executed: list[ExecutedCall] = []
        for call in calls:
            try:
                result = self.execute(call)
            except UnknownFunctionError as exc:
                logger.error("%s", exc)
                result = FunctionCallResult(success=False, error_message=str(exc))
            executed.append(ExecutedCall(call=call, result=result))
        return executed
