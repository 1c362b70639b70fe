"""
Relay Server - Port 5001
Zero-knowledge relay for end-to-end encrypted messaging.
"""
import os

from cipherchat.relay import create_relay_app

app, socketio = create_relay_app()


if __name__ == "__main__":
    socketio.run(app, host="127.0.0.1", port=int(os.environ.get("RELAY_PORT", "5001")))
