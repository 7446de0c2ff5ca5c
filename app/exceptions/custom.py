class BlandError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TwilioError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class SendGridError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(Exception):
    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Rate limit exceeded for {service}")


class InvalidPhoneNumberError(ValueError):
    def __init__(self, phone_number: str | None):
        self.phone_number = phone_number
        self.message = f"A valid E.164 phone number is required, got {phone_number!r}"
        super().__init__(self.message)


class ComplaintNotFoundError(Exception):
    def __init__(self, complaint_id: str):
        self.complaint_id = complaint_id
        self.message = f"Complaint {complaint_id} not found"
        super().__init__(self.message)


class TurnNotFoundError(Exception):
    def __init__(self, turn_id: str):
        self.turn_id = turn_id
        self.message = f"No question found matching turn id {turn_id}"
        super().__init__(self.message)


class DialogueStateError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CallStateError(Exception):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Illegal call state transition {current} -> {target}")


class CallFailedError(Exception):
    def __init__(self, status: str, message: str | None = None):
        self.status = status
        self.message = message or f"Call {status}"
        super().__init__(f"Call {status}: {self.message}")


class CallMonitoringTimeout(Exception):
    def __init__(self, call_id: str, polls: int):
        self.call_id = call_id
        self.polls = polls
        super().__init__(
            f"Call monitoring timeout after {polls} polls - call {call_id} may still be in progress"
        )


class IVRNavigationError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FallbackError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
