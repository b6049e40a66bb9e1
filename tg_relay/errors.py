class RelayError(Exception):
    """Base class for every error raised by the relay."""


class ConfigError(RelayError):
    pass


class InvalidTransition(RelayError):
    """A menu selection named a mode or locale that does not exist."""


class ResponderError(RelayError):
    """The language-model call did not produce a usable reply."""


class ResponderFailure(ResponderError):
    pass


class ResponderIncompleteState(ResponderError):
    """The responder is waiting for an action the bot does not perform (tool calls etc.)."""


class TransportDeliveryError(RelayError):
    def __init__(self, chat_id, reason):
        super().__init__(f"delivery to chat {chat_id} failed: {reason}")
        self.chat_id = chat_id
        self.reason = reason


class AuthorizationDenied(RelayError):
    pass
