"""Bracket engine errors. All are local validation failures; none are retryable."""


class BracketError(Exception):
    pass


class InsufficientEntrants(BracketError):
    pass


class InvalidEntrants(BracketError):
    pass


class EventNotFound(BracketError):
    pass


class MatchNotFound(BracketError):
    pass


class MatchAlreadyResolved(BracketError):
    pass


class InvalidScore(BracketError):
    pass


class ChampionAlreadyDeclared(BracketError):
    pass


class BracketNotReady(BracketError):
    pass
