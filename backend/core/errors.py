"""Error types shared by the call flow, the usage ledger and the feedback service"""


class MockInterviewError(Exception):
    """Base class for application errors"""


class ConfigurationError(MockInterviewError):
    """A required setting (workflow or assistant id) is missing"""


class QuotaExceededError(MockInterviewError):
    """The user has no interviews left"""

    def __init__(self, message: str = "You have reached your interview limit. Each user can only take one interview."):
        super().__init__(message)


class SessionError(MockInterviewError):
    """The voice session could not be started or broke down"""


class PersistenceError(MockInterviewError):
    """A database read or write failed"""


class FeedbackError(MockInterviewError):
    """Feedback could not be generated or saved"""
