# Eventlet monkey patching MUST be first before any other imports
import eventlet

eventlet.monkey_patch()

import os  # noqa: E402

from streakr import create_app, db, socketio  # noqa: E402
from streakr.models import (  # noqa: E402
    AdminAction,
    Game,
    League,
    Pick,
    Question,
    Round,
    ScoredPick,
    StreakAggregate,
    User,
    Venue,
)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Round": Round,
        "Game": Game,
        "Question": Question,
        "Pick": Pick,
        "StreakAggregate": StreakAggregate,
        "ScoredPick": ScoredPick,
        "League": League,
        "Venue": Venue,
        "AdminAction": AdminAction,
    }


if __name__ == "__main__":
    socketio.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 5000)),
        debug=app.config.get("DEBUG", False),
    )
