import asyncio
import logging
import os
import sys
import time

import requests
from dotenv import load_dotenv

from lifecycle.policy import policy_from_env
from realtime.channel import ChannelSession, connection_label
from realtime.socketio_transport import SOCKET_URL, socketio_transport_factory

# API_URL=http://localhost:5000/api
# TOKEN=<optional; a throwaway seeker is registered when unset>
load_dotenv()
API_URL = os.getenv("API_URL", "http://localhost:5000/api")


def register_test_user():
    email = f"test{int(time.time() * 1000)}@example.com"
    print(f"1. Registering user: {email}")
    response = requests.post(
        f"{API_URL}/auth/register",
        json={"name": "Test User", "email": email, "password": "password123", "role": "seeker"},
        timeout=10,
    )
    response.raise_for_status()
    token = response.json().get("token")
    print(f"2. Got token: {'YES (length ' + str(len(token)) + ')' if token else 'NO'}")
    return token


async def check_connection(token, wait_seconds=5.0):
    policy = policy_from_env()
    session = ChannelSession(
        socketio_transport_factory(),
        SOCKET_URL,
        max_reconnect_attempts=policy.reconnect_attempts,
        reconnect_delay=policy.reconnect_delay_seconds,
        reconnect_delay_max=policy.reconnect_delay_max_seconds,
    )
    session.subscribe_state(lambda status: print(f"   state: {connection_label(status)}"
                                                 + (f" ({status.last_error})" if status.last_error else "")))

    print(f"3. Connecting to socket: {SOCKET_URL}")
    await session.connect(token)

    deadline = time.monotonic() + wait_seconds
    while not session.is_connected and not session.status.gave_up and time.monotonic() < deadline:
        await asyncio.sleep(0.1)

    ok = session.is_connected
    if ok:
        print("4. CONNECTED")
    else:
        print(f"4. NOT CONNECTED: {session.status.last_error or 'timeout'}")
    await session.disconnect()
    return ok


def main():
    try:
        token = os.getenv("TOKEN") or register_test_user()
    except requests.RequestException as e:
        print(f"API ERROR: {e}")
        return 1
    if not token:
        print("No token received")
        return 1

    ok = asyncio.run(check_connection(token))
    print("--- TEST PASSED ---" if ok else "--- TEST FAILED ---")
    return 0 if ok else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
