from __future__ import annotations


class QuizRoomError(RuntimeError):
    code = "QUIZ_ROOM_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict[str, str]:
        return {"message": self.message, "code": self.code}


class AuthenticationError(QuizRoomError):
    code = "AUTHENTICATION_FAILED"


class NotFoundError(QuizRoomError):
    code = "NOT_FOUND"


class PreconditionError(QuizRoomError):
    code = "PRECONDITION_FAILED"


class ExternalWriteError(QuizRoomError):
    code = "EXTERNAL_WRITE_FAILED"
