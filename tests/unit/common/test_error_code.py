"""Unit tests for ErrCode, ErrCodeError, and handle_auth_error."""

from fastapi import HTTPException

from billing.common.code import ErrCode, ErrCodeError, handle_auth_error
from billing.core.payment.ledger import TransitionRejected


# ------------------------------------------------------------------
# ErrCode.with_messages / with_errors
# ------------------------------------------------------------------


class TestErrCode:
    def test_with_messages_creates_error(self) -> None:
        error = ErrCode.ORDER_NOT_FOUND.with_messages("Order 123 not found")
        assert isinstance(error, ErrCodeError)
        assert error.code == ErrCode.ORDER_NOT_FOUND
        assert "Order 123 not found" in error.messages

    def test_with_messages_drops_empty(self) -> None:
        error = ErrCode.UNKNOWN_ERROR.with_messages("msg1", "", "msg2")
        assert error.messages == ("msg1", "msg2")

    def test_with_errors_extracts_strings(self) -> None:
        error = ErrCode.INTERNAL_SERVER_ERROR.with_errors(ValueError("bad value"), RuntimeError("runtime fail"))
        assert "bad value" in error.messages
        assert "runtime fail" in error.messages


# ------------------------------------------------------------------
# ErrCodeError
# ------------------------------------------------------------------


class TestErrCodeError:
    def test_format_with_messages(self) -> None:
        error = ErrCodeError(ErrCode.PLAN_NOT_FOUND, ("Plan not found",))
        formatted = str(error)
        assert "PLAN_NOT_FOUND" in formatted
        assert "3000" in formatted
        assert "Plan not found" in formatted

    def test_as_dict_with_messages(self) -> None:
        error = ErrCodeError(ErrCode.PLAN_NOT_FOUND, ("primary", "detail1", "detail2"))
        assert error.as_dict() == {"msg": "primary", "info": ["detail1", "detail2"]}

    def test_as_dict_single_message(self) -> None:
        assert ErrCodeError(ErrCode.PLAN_NOT_FOUND, ("only",)).as_dict() == {"msg": "only"}

    def test_as_dict_without_messages(self) -> None:
        assert ErrCodeError(ErrCode.PLAN_NOT_FOUND).as_dict() == {"msg": "Plan Not Found", "info": []}


# ------------------------------------------------------------------
# handle_auth_error
# ------------------------------------------------------------------


class TestHandleAuthError:
    def test_not_found_maps_to_404(self) -> None:
        exc = handle_auth_error(ErrCode.COURSE_NOT_FOUND.with_messages("Course not found"))
        assert isinstance(exc, HTTPException)
        assert exc.status_code == 404
        assert exc.detail == {"msg": "Course not found"}

    def test_conflicts_map_to_409(self) -> None:
        assert handle_auth_error(ErrCode.COURSE_ALREADY_OWNED.with_messages("x")).status_code == 409
        assert handle_auth_error(ErrCode.SUBSCRIPTION_STATE_CONFLICT.with_messages("x")).status_code == 409

    def test_auth_maps_to_401(self) -> None:
        assert handle_auth_error(ErrCode.ADMIN_REQUIRED.with_messages("x")).status_code == 401

    def test_provider_not_configured_maps_to_400(self) -> None:
        assert handle_auth_error(ErrCode.PROVIDER_NOT_CONFIGURED.with_messages("x")).status_code == 400

    def test_unmapped_code_is_500(self) -> None:
        assert handle_auth_error(ErrCode.UNKNOWN_ERROR.with_messages("x")).status_code == 500

    def test_transition_rejected_is_409(self) -> None:
        from uuid import uuid4

        error = TransitionRejected(uuid4(), "failed", "not_completed")
        exc = handle_auth_error(error)
        assert exc.status_code == 409
        assert "not_completed" in exc.detail["msg"]
        assert "failed" in exc.detail["msg"]

    def test_every_business_code_is_a_client_error(self) -> None:
        generic = {ErrCode.UNKNOWN_ERROR, ErrCode.INTERNAL_SERVER_ERROR}
        for code in ErrCode:
            if code in generic:
                continue
            assert 400 <= handle_auth_error(code.with_messages("x")).status_code < 500, code.name
