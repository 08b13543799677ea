"""
Activity Module
Remote feed collaborators: the abstract interface, an in-process implementation
and the Socket.IO client.
"""

from activity.remote import FeedRemote, Subscription
from activity.memory_remote import InMemoryFeedRemote
from activity.socketio_remote import SocketIOFeedRemote
