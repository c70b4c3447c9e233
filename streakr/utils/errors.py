"""
Error types for Streakr

Domain errors carry the HTTP status they map to so API routes and the
global error handler can turn them into {"error": message} payloads.
"""


class StreakrError(Exception):
    """Base exception for Streakr domain errors"""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class InvalidInput(StreakrError):
    """Missing or malformed round number, question id, action or pick"""

    status_code = 400


class NotFound(StreakrError):
    """Referenced round or question does not exist"""

    status_code = 404


class PickLocked(StreakrError):
    """Pick submitted after the question or game locked"""

    status_code = 409


class ConcurrentAggregateConflict(StreakrError):
    """Contention on a user's streak aggregate outlasted the retry budget"""

    status_code = 409

    def __init__(self, user_id, attempts):
        super().__init__(
            f"Streak aggregate for user {user_id} still contended after {attempts} attempts"
        )
        self.user_id = user_id
        self.attempts = attempts


class PartialFanoutFailure(StreakrError):
    """
    One or more per-user streak updates failed while others succeeded.

    The question's status/outcome write has already committed when this is
    reported, so it is surfaced as a warning rather than a request failure.
    """

    status_code = 207

    def __init__(self, question_id, failed_user_ids):
        super().__init__(
            f"Streak update failed for {len(failed_user_ids)} user(s) on question {question_id}"
        )
        self.question_id = question_id
        self.failed_user_ids = list(failed_user_ids)

    def to_dict(self):
        return {
            "error": self.message,
            "questionId": self.question_id,
            "failedUserIds": self.failed_user_ids,
        }


class UpstreamUnavailable(StreakrError):
    """The live score API could not be reached or returned garbage"""

    status_code = 502


class PowerUpUnavailable(StreakrError):
    """A Panic or Golden Free Kick that is used up or not allowed here"""

    status_code = 409

    def __init__(self, message, **details):
        super().__init__(message)
        self.details = details

    def to_dict(self):
        data = {"error": self.message}
        data.update(self.details)
        return data
