#!/usr/bin/env python3
"""
Two-user Terminal Chat

A terminal front end for linechat that demonstrates:
- Listening for one peer, or connecting to one
- Sending typed lines while received lines arrive asynchronously
- Observing the connection through notifications
- Saving the transcript

Run one side with --listen, then connect to it from the other:

    python examples/chat.py --listen --port 1501
    python examples/chat.py --host localhost --port 1501

Commands while chatting:
    /quit         close the connection and exit
    /save [FILE]  save the transcript (default transcript.txt)
    /clear        clear the transcript
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from linechat import ChatSession, ConnectionObserver, ChatError, DEFAULT_PORT
from linechat.transcript import DEFAULT_FILENAME
import logging
import threading

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class TerminalWindow(ConnectionObserver):
    """Prints the conversation and tracks when the session is over."""

    def __init__(self):
        self.closed = threading.Event()

    def on_listening(self, port):
        print(f"[System] Listening on port {port} - waiting for one peer...")

    def on_connecting(self, host, port):
        print(f"[System] Connecting to {host}:{port} ...")

    def on_connected(self):
        print("[System] Connection established. Type messages, /quit to exit.")

    def on_message_received(self, text):
        print(f"\n< {text}")
        print("> ", end='', flush=True)

    def on_remote_closed(self):
        print("\n[System] Connection closed from other side.")

    def on_error(self, error):
        print(f"\n[System] Error: {error}")

    def on_closed(self):
        print("[System] *** CONNECTION CLOSED *** (press Enter to exit)")
        self.closed.set()


def save_transcript(session: ChatSession, path: str):
    try:
        saved = session.transcript.save(path)
        print(f"[System] Transcript saved to {saved}")
    except ChatError as e:
        print(f"[System] {e}")


def chat(session: ChatSession, window: TerminalWindow):
    """
    Read stdin and send each line until /quit, EOF or the connection ends.
    """
    while not window.closed.is_set():
        line = sys.stdin.readline()
        if not line:
            break

        text = line.rstrip("\n")
        if text.lower() == "/quit":
            break
        if text.lower().startswith("/save"):
            parts = text.split(maxsplit=1)
            save_transcript(session, parts[1] if len(parts) > 1 else DEFAULT_FILENAME)
            continue
        if text.lower() == "/clear":
            session.transcript.clear()
            continue

        if not session.send(text):
            print("[System] Not connected - message not sent")


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Two-user Networked Chat")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--listen", action="store_true", help="Wait for a peer to connect")
    group.add_argument("--host", help="Host to connect to")
    parser.add_argument("--port", default=str(DEFAULT_PORT), help=f"Port (default {DEFAULT_PORT})")
    parser.add_argument("--transcript", help="Save the transcript to this file on exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    if not args.verbose:
        logging.getLogger().setLevel(logging.WARNING)

    window = TerminalWindow()
    session = ChatSession(observer=window)

    try:
        if args.listen:
            session.listen(args.port)
        else:
            session.connect(args.host, args.port)
    except ValueError as e:
        parser.error(str(e))

    try:
        chat(session, window)
    except KeyboardInterrupt:
        print("\n[System] KeyboardInterrupt - exiting.")
    finally:
        session.shutdown(timeout=5.0)
        if args.transcript:
            save_transcript(session, args.transcript)
        print("[System] Bye!")


if __name__ == "__main__":
    main()
