"""
Failure taxonomy for the core.

Every failure raised by a service is an ``ArenaError`` whose ``kind`` names the
failure (``CodeAlreadyUsed``, ``InvalidRank``...) and whose category class
decides the HTTP status. Only ``Unavailable`` failures are worth retrying.
"""


class ArenaError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, kind: str, message: str = None, **details):
        self.kind = kind
        self.message = message or kind
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {'error': self.message, 'kind': self.kind}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(ArenaError):
    status_code = 400


class Unauthenticated(ArenaError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__('Unauthenticated', message)


class Forbidden(ArenaError):
    status_code = 403

    def __init__(self, message: str = "Admin role required", kind: str = 'Forbidden', **details):
        super().__init__(kind, message, **details)


class NotFound(ArenaError):
    status_code = 404


class Conflict(ArenaError):
    status_code = 409


class Gone(ArenaError):
    status_code = 410


class Unavailable(ArenaError):
    status_code = 503
    retryable = True


# ==================== Validation ====================

class InvalidQuantity(ValidationError):
    def __init__(self, quantity, maximum: int = None):
        if maximum is not None:
            message = f"Quantity must be between 1 and {maximum}, got {quantity}"
        else:
            message = f"Quantity must be at least 1, got {quantity}"
        super().__init__('InvalidQuantity', message, quantity=quantity)


class InvalidExpiry(ValidationError):
    def __init__(self, expiry_days):
        super().__init__(
            'InvalidExpiry',
            f"Expiry must be at least 1 day, got {expiry_days}",
            expiry_days=expiry_days
        )


class InvalidRank(ValidationError):
    def __init__(self, rank):
        super().__init__('InvalidRank', f"Rank must be 1, 2 or 3, got {rank!r}", rank=rank)


class InvalidStatus(ValidationError):
    def __init__(self, status):
        super().__init__('InvalidStatus', f"Unknown submission status {status!r}", status=status)


class MissingField(ValidationError):
    def __init__(self, field: str):
        super().__init__('MissingField', f"{field} is required", field=field)


class InvalidField(ValidationError):
    def __init__(self, field: str, expected: str = 'a string'):
        super().__init__('InvalidField', f"{field} must be {expected}", field=field)


# ==================== Authorization ====================

class AccountNotApproved(Forbidden):
    def __init__(self, user_id):
        super().__init__(
            "Account is waiting for approval",
            kind='AccountNotApproved',
            user_id=user_id
        )


class SelfVoteNotAllowed(Forbidden):
    def __init__(self, submission_id):
        super().__init__(
            "Cannot vote for your own submission",
            kind='SelfVoteNotAllowed',
            submission_id=submission_id
        )


# ==================== Not found ====================

class CodeNotFound(NotFound):
    def __init__(self, code):
        super().__init__('CodeNotFound', "Invalid access code", code=code)


class SubmissionNotFound(NotFound):
    def __init__(self, submission_id):
        super().__init__('SubmissionNotFound', "Submission not found", submission_id=submission_id)


class TournamentNotFound(NotFound):
    def __init__(self, tournament_id):
        super().__init__('TournamentNotFound', "Tournament not found", tournament_id=tournament_id)


class VoteNotFound(NotFound):
    def __init__(self, voter_id, submission_id):
        super().__init__(
            'VoteNotFound',
            "No vote to retract",
            voter_id=voter_id,
            submission_id=submission_id
        )


class UserNotFound(NotFound):
    def __init__(self, user_id):
        super().__init__('UserNotFound', "User not found", user_id=user_id)


class WaitlistEntryNotFound(NotFound):
    def __init__(self, entry_id):
        super().__init__('WaitlistEntryNotFound', "Waitlist entry not found", entry_id=entry_id)


# ==================== Conflicts ====================

class DuplicateSubmission(Conflict):
    def __init__(self, user_id, tournament_id):
        super().__init__(
            'DuplicateSubmission',
            "You have already submitted to this tournament",
            user_id=user_id,
            tournament_id=tournament_id
        )


class CodeAlreadyUsed(Conflict):
    def __init__(self, code):
        super().__init__('CodeAlreadyUsed', "Access code has already been used", code=code)


class SubmissionNotApproved(Conflict):
    def __init__(self, submission_id, status: str):
        super().__init__(
            'SubmissionNotApproved',
            f"Cannot vote on a {status} submission",
            submission_id=submission_id,
            status=status
        )


class TournamentNotActive(Conflict):
    def __init__(self, tournament_id, status: str):
        super().__init__(
            'TournamentNotActive',
            f"Tournament is {status} and not accepting submissions",
            tournament_id=tournament_id,
            status=status
        )


class RankAlreadyAssigned(Conflict):
    def __init__(self, rank: int, tournament_id):
        super().__init__(
            'RankAlreadyAssigned',
            f"Rank {rank} is already assigned to another submission in this tournament",
            rank=rank,
            tournament_id=tournament_id
        )


class AlreadyApproved(Conflict):
    def __init__(self, user_id):
        super().__init__('AlreadyApproved', "Account is already approved", user_id=user_id)


class InvalidTransition(Conflict):
    def __init__(self, reason: str, **details):
        super().__init__('InvalidTransition', reason, **details)


# ==================== Expired ====================

class CodeExpired(Gone):
    def __init__(self, code):
        super().__init__('CodeExpired', "Access code has expired", code=code)


# ==================== Availability ====================

class StorageUnavailable(Unavailable):
    def __init__(self, operation: str):
        super().__init__(
            'StorageUnavailable',
            f"Storage unavailable during {operation}",
            operation=operation
        )


class AggregationUnavailable(Unavailable):
    def __init__(self):
        super().__init__('AggregationUnavailable', "No leaderboard data available")


# ==================== Field checks ====================

def require_text(value, field: str) -> str:
    """Stripped value of a required string field."""
    if value is not None and not isinstance(value, str):
        raise InvalidField(field)
    if not value or not value.strip():
        raise MissingField(field)
    return value.strip()


def optional_text(value, field: str):
    if value is not None and not isinstance(value, str):
        raise InvalidField(field)
    return value
