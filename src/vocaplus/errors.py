class VocaPlusError(Exception):
    """Base class for every failure the engine surfaces to its caller."""


class ConfigurationError(VocaPlusError):
    """The requested test setup cannot be started."""


class UnsupportedBookError(ConfigurationError):
    def __init__(self, book_key):
        super().__init__(f"Unsupported book: {book_key!r}")
        self.book_key = book_key


class InvalidConfigError(ConfigurationError):
    pass


class EmptyScopeError(ConfigurationError):
    """No vocabulary matches the selected chapter/topics."""


class SourceUnavailableError(VocaPlusError):
    """The row source for a book could not be fetched or parsed."""

    def __init__(self, book_key, reason=""):
        message = f"Vocabulary source for {book_key!r} is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.book_key = book_key


class NoQuestionsBuiltError(VocaPlusError):
    def __init__(self):
        super().__init__("No question could be built from this scope")


class SessionError(VocaPlusError):
    pass


class InvalidStateError(SessionError):
    def __init__(self, action, state):
        super().__init__(f"Cannot {action} while in state {state!r}")
        self.action = action
        self.state = state


class NothingToRetryError(SessionError):
    def __init__(self):
        super().__init__("There are no wrong answers to retry")


class InvalidChoiceError(SessionError):
    def __init__(self, choice_index):
        super().__init__(f"No choice at index {choice_index}")
        self.choice_index = choice_index
