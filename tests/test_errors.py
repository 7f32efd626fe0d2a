import json

from planboard.errors import (
    ErrorResponse,
    PlanboardError,
    error_json,
    error_response,
    success_response,
)


def test_error_body_leaves_out_the_status_code():
    error = ErrorResponse(
        code="PATH_TRAVERSAL", message="Nope", details={"path": ".."}, status_code=418
    )

    assert error.to_dict() == {
        "code": "PATH_TRAVERSAL",
        "message": "Nope",
        "details": {"path": ".."},
    }


def test_planboard_error_defaults():
    exc = PlanboardError("INVALID_TYPE", "Bad path")

    assert exc.code == "INVALID_TYPE"
    assert exc.error.details == {}
    assert exc.error.status_code == 400
    assert str(exc) == "Bad path"


def test_envelopes_accept_the_exception_or_its_error():
    exc = PlanboardError("TASK_NOT_FOUND", "Missing", {"id": "T-1"})
    expected = {
        "ok": False,
        "error": {"code": "TASK_NOT_FOUND", "message": "Missing", "details": {"id": "T-1"}},
    }

    assert success_response({"tasks": []}) == {"ok": True, "data": {"tasks": []}}
    assert error_response(exc) == expected
    assert error_response(exc.error) == expected


def test_error_json_uses_the_carried_status_code():
    response = error_json(
        PlanboardError("SERVICE_UNAVAILABLE", "Not ready", status_code=503)
    )

    assert response.status_code == 503
    assert json.loads(response.body)["error"]["code"] == "SERVICE_UNAVAILABLE"
