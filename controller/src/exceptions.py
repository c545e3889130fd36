"""
Load-shedding exception hierarchy.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-002)
"""


class LoadShedError(Exception):
    """Base exception for the load-shedding controller."""

    pass


class CommandFailure(LoadShedError):
    """A device on/off command could not be written to the store."""

    def __init__(self, room_id: str, device_id: str) -> None:
        super().__init__(f"Command to device {room_id}/{device_id} failed")
        self.room_id = room_id
        self.device_id = device_id


class PolicyWriteFailure(LoadShedError):
    """Writing the load policy document failed."""

    pass


class DuplicateLoadError(LoadShedError):
    """The device is already assigned to a load list."""

    def __init__(self, load_id: str) -> None:
        super().__init__(f"Device already in a load list: {load_id}")
        self.load_id = load_id


class LoadNotFoundError(LoadShedError):
    """The load id is not present in either load list."""

    def __init__(self, load_id: str) -> None:
        super().__init__(f"Load not found: {load_id}")
        self.load_id = load_id
