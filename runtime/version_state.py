"""
Refresh/version controller for one sync session.

The counter records every locally requested refresh of the grid.
Manual refreshes, periodic triggers and commits bump it. Change notifications
from the store only mark the grid stale: they ask for a reload without moving
the counter. The reload path claims work with a compare-and-swap so at most
one reload is ever in flight.
"""

import logging
import threading
import time


def default_version_state():
    return {
        "lock": threading.Lock(),
        "counter": 0,
        "last_refresh_time": None,
        "last_reason": None,
        "last_reacted": 0,
        "reload_in_progress": False,
        "pending_remote_change": False,
        "claimed_remote_change": False,
        "listeners": [],
    }


def _notify(state, counter, reason):
    with state["lock"]:
        listeners = list(state["listeners"])
    for listener in listeners:
        try:
            listener(counter, reason)
        except Exception as exc:
            logging.error("Version state: listener failed: %s", exc)


def bump_version(state, *, reason="manual", now_value=None):
    """Increment the counter, record the refresh time and notify listeners."""
    with state["lock"]:
        state["counter"] += 1
        state["last_refresh_time"] = time.time() if now_value is None else now_value
        state["last_reason"] = reason
        counter = state["counter"]
    logging.debug("Version state: counter=%s reason=%s", counter, reason)
    _notify(state, counter, reason)
    return counter


def trigger_refresh(state, reason="manual"):
    return bump_version(state, reason=reason)


def subscribe(state, listener):
    """Register `listener(counter, reason)`; returns an unsubscribe callable."""
    with state["lock"]:
        state["listeners"].append(listener)

    def unsubscribe():
        with state["lock"]:
            if listener in state["listeners"]:
                state["listeners"].remove(listener)

    return unsubscribe


def mark_remote_change(state, *, now_value=None):
    """Flag the grid as stale after a change notification; the counter is left alone."""
    with state["lock"]:
        state["pending_remote_change"] = True
        state["last_refresh_time"] = time.time() if now_value is None else now_value
        state["last_reason"] = "remote_change"
    logging.debug("Version state: remote change pending")


def claim_reload(state):
    """
    Claim the current version for a reload.

    Returns the claimed counter, or None when nothing is newer than the last
    version reacted to, no remote change is pending, or another reload is
    already in flight.
    """
    with state["lock"]:
        if state["reload_in_progress"]:
            return None
        if state["counter"] <= state["last_reacted"] and not state["pending_remote_change"]:
            return None
        state["reload_in_progress"] = True
        state["claimed_remote_change"] = state["pending_remote_change"]
        state["pending_remote_change"] = False
        return state["counter"]


def complete_reload(state, claimed_counter, ok=True):
    with state["lock"]:
        if ok and claimed_counter is not None:
            state["last_reacted"] = max(state["last_reacted"], int(claimed_counter))
        if not ok and state["claimed_remote_change"]:
            state["pending_remote_change"] = True
        state["claimed_remote_change"] = False
        state["reload_in_progress"] = False


def version_snapshot(state):
    with state["lock"]:
        return {
            "counter": state["counter"],
            "last_refresh_time": state["last_refresh_time"],
            "last_reason": state["last_reason"],
            "last_reacted": state["last_reacted"],
            "reload_in_progress": state["reload_in_progress"],
            "pending_remote_change": state["pending_remote_change"],
        }
