"""Room membership for the relay.

Rooms are created by the first join and deleted as soon as the last member
leaves, so a room name seen again later always refers to a fresh room.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .service import RelayService


class RoomManager:
    """Tracks which connection ids are members of which room."""

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("lrcd.rooms")
        self.rooms: dict[str, set[int]] = {}

    def clear_all(self) -> None:
        """Clear all room state. Called during relay shutdown."""
        self.rooms.clear()

    def get_room_members(self, room: str) -> set[int]:
        """Get the set of connection ids currently in a room."""
        return self.rooms.get(room, set())

    def has_room(self, room: str) -> bool:
        return room in self.rooms

    def add_member(self, room: str, conn_id: int) -> bool:
        """Add a connection to a room, creating the room if needed.

        Returns True when the room was created by this call.
        """
        created = room not in self.rooms
        self.rooms.setdefault(room, set()).add(conn_id)
        if created:
            self.log.debug("Room created room=%s", room)
        return created

    def remove_member(self, room: str, conn_id: int) -> bool:
        """Remove a connection from a room, deleting the room if it is now empty.

        Returns True when the room was deleted.
        """
        members = self.rooms.get(room)
        if members is None:
            return False
        members.discard(conn_id)
        if members:
            return False
        self.rooms.pop(room, None)
        self.log.debug("Room closed room=%s", room)
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics for relay stats."""
        rooms_total = len(self.rooms)
        memberships = sum(len(v) for v in self.rooms.values())
        top_rooms = sorted(
            ((room, len(members)) for room, members in self.rooms.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
