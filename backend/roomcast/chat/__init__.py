"""Chat engine: sessions, rooms, presence, message mutations and broadcasting.

Components:
    - SessionRegistry: who is online and in which room.
    - RoomDirectory / MessageLog: membership, ordered logs, message index.
    - PresenceTracker: typing indicators.
    - MessageMutationService: reactions and read receipts.
    - BroadcastDispatcher: audience resolution and delivery.
    - ChatHub: composes the above and handles client events.
"""
