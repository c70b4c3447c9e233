"""
SocketIO Event Handlers for Real-time Updates

Clients connect to the /live namespace. Logged-in users join their personal
``user_<id>`` room (streak updates after settlement); any client may
subscribe to ``round_<n>`` rooms for settlement, lock and pick-split events.
"""

import logging

from flask import request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room

from streakr import socketio
from streakr.models import Pick

logger = logging.getLogger(__name__)

LIVE_NAMESPACE = "/live"

# Track connected clients and their subscriptions
connected_users = {}


@socketio.on("connect", namespace=LIVE_NAMESPACE)
def on_connect():
    """Handle client connection to the live namespace"""
    try:
        user_id = current_user.id if current_user.is_authenticated else None
        client_id = request.sid

        connected_users[client_id] = {"user_id": user_id, "subscriptions": set()}

        if user_id is not None:
            join_room(f"user_{user_id}")
            if current_user.streak:
                emit("streak_update", current_user.streak.to_dict())

        logger.info(f"Client connected to /live: {client_id} (user: {user_id})")

    except Exception as e:
        logger.error(f"Error in live connect: {e}")


@socketio.on("disconnect", namespace=LIVE_NAMESPACE)
def on_disconnect(*args):
    """Handle client disconnection from the live namespace"""
    client_id = request.sid
    info = connected_users.pop(client_id, None)
    if info:
        logger.info(f"Client disconnected from /live: {client_id} (user: {info['user_id']})")


@socketio.on("subscribe_round", namespace=LIVE_NAMESPACE)
def on_subscribe_round(data):
    """Subscribe to settlement and lock events for a round"""
    try:
        client_id = request.sid
        round_number = (data or {}).get("roundNumber")

        if client_id not in connected_users or not isinstance(round_number, int):
            return

        room_name = f"round_{round_number}"
        if room_name in connected_users[client_id]["subscriptions"]:
            return

        connected_users[client_id]["subscriptions"].add(room_name)
        join_room(room_name)

        emit("pick_stats", {"roundNumber": round_number, "stats": Pick.stats_for_round(round_number)})
        logger.debug(f"Client {client_id} subscribed to round {round_number}")
    except Exception as e:
        logger.error(f"Error in subscribe_round: {e}")


@socketio.on("unsubscribe_round", namespace=LIVE_NAMESPACE)
def on_unsubscribe_round(data):
    """Unsubscribe from a round's events"""
    try:
        client_id = request.sid
        round_number = (data or {}).get("roundNumber")

        if client_id in connected_users and isinstance(round_number, int):
            connected_users[client_id]["subscriptions"].discard(f"round_{round_number}")
            leave_room(f"round_{round_number}")
            logger.debug(f"Client {client_id} unsubscribed from round {round_number}")
    except Exception as e:
        logger.error(f"Error in unsubscribe_round: {e}")


def broadcast_pick_update(round_number, question_id, action="updated"):
    """Tell the round room the yes/no split moved after a pick change"""
    try:
        stats = Pick.stats_for_round(round_number).get(
            question_id, {"yes": 0, "no": 0, "total": 0}
        )
        socketio.emit(
            "pick_update",
            {
                "action": action,
                "roundNumber": round_number,
                "questionId": question_id,
                "stats": stats,
            },
            to=f"round_{round_number}",
            namespace=LIVE_NAMESPACE,
        )
    except Exception as e:
        logger.error(f"Error broadcasting pick update: {e}")


def broadcast_comment(round_number, comment):
    try:
        socketio.emit(
            "comment_added",
            comment,
            to=f"round_{round_number}",
            namespace=LIVE_NAMESPACE,
        )
    except Exception as e:
        logger.error(f"Error broadcasting comment: {e}")


def get_connection_stats():
    """Get detailed connection statistics"""
    return {
        "total_connections": len(connected_users),
        "authenticated_users": len(
            [u for u in connected_users.values() if u["user_id"]]
        ),
        "anonymous_users": len(
            [u for u in connected_users.values() if not u["user_id"]]
        ),
        "total_subscriptions": sum(
            len(u["subscriptions"]) for u in connected_users.values()
        ),
    }
