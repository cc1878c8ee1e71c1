"""Errors reported back to the client that caused them.

Every error carries a stable ``code`` for the ERROR reply. Raising one of
these never mutates room or game state; validation happens first.
"""


class GameError(Exception):
    """Base class for errors answered with an ERROR message."""

    code = "GAME_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- Protocol ---

class ProtocolError(GameError):
    code = "INVALID_MESSAGE"


class UnknownMessageTypeError(ProtocolError):
    code = "UNKNOWN_TYPE"


# --- Rooms ---

class RoomNotFoundError(GameError):
    code = "ROOM_NOT_FOUND"

    def __init__(self, message: str = "Room not found"):
        super().__init__(message)


class NotInRoomError(GameError):
    code = "NOT_IN_ROOM"

    def __init__(self, message: str = "Not in a room"):
        super().__init__(message)


class NotHostError(GameError):
    code = "NOT_HOST"

    def __init__(self, message: str = "Only host can start the game"):
        super().__init__(message)


class NotEnoughPlayersError(GameError):
    code = "NOT_ENOUGH_PLAYERS"

    def __init__(self, message: str = "Need at least 2 players to start"):
        super().__init__(message)


class GameAlreadyStartedError(GameError):
    code = "GAME_ALREADY_STARTED"

    def __init__(self, message: str = "Game already started"):
        super().__init__(message)


# --- Gameplay ---

class GameNotFoundError(GameError):
    code = "GAME_NOT_FOUND"

    def __init__(self, message: str = "Not in a game"):
        super().__init__(message)


class PlayerNotFoundError(GameError):
    code = "PLAYER_NOT_FOUND"

    def __init__(self, message: str = "Player not in this game"):
        super().__init__(message)


class NotYourTurnError(GameError):
    code = "NOT_YOUR_TURN"

    def __init__(self, message: str = "Not your turn"):
        super().__init__(message)


class AlreadyRolledError(GameError):
    code = "ALREADY_ROLLED"

    def __init__(self, message: str = "Already rolled"):
        super().__init__(message)


class DiceNotRolledError(GameError):
    code = "DICE_NOT_ROLLED"

    def __init__(self, message: str = "Roll dice first"):
        super().__init__(message)


class TokenNotFoundError(GameError):
    code = "TOKEN_NOT_FOUND"

    def __init__(self, message: str = "Token not found"):
        super().__init__(message)


class IllegalMoveError(GameError):
    code = "ILLEGAL_MOVE"

    def __init__(self, message: str = "Invalid move"):
        super().__init__(message)


class GameOverError(GameError):
    code = "GAME_OVER"

    def __init__(self, message: str = "Game is over"):
        super().__init__(message)


# --- Connections ---

class SupersededConnectionError(GameError):
    code = "CONNECTION_SUPERSEDED"

    def __init__(self, message: str = "A newer connection from this address has taken over"):
        super().__init__(message)
