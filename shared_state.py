"""Thin helpers to standardize lock-based access to shared and session state dicts."""


def snapshot_locked(state, reader):
    """Read a snapshot under lock using a caller-provided reader."""
    with state["lock"]:
        return reader(state)


def mutate_locked(state, mutator):
    """Apply a mutation under lock using a caller-provided mutator."""
    with state["lock"]:
        return mutator(state)


def update_locked(state, **updates):
    """Apply a shallow update under lock."""
    with state["lock"]:
        state.update(updates)


def get_or_create_locked(state, registry_key, item_key, factory):
    """Return state[registry_key][item_key], building it with `factory()` on first use."""
    with state["lock"]:
        registry = state.setdefault(registry_key, {})
        item = registry.get(item_key)
        if item is None:
            item = factory()
            registry[item_key] = item
        return item


def claim_key_locked(state, set_key, item):
    """Add `item` to the in-flight set under `set_key`. Returns False when it is already there."""
    with state["lock"]:
        in_flight = state.setdefault(set_key, set())
        if item in in_flight:
            return False
        in_flight.add(item)
        return True


def release_key_locked(state, set_key, item):
    with state["lock"]:
        state.setdefault(set_key, set()).discard(item)


def claim_flag_locked(state, flag_key):
    """Set a boolean busy flag. Returns False when it was already set."""
    with state["lock"]:
        if state.get(flag_key):
            return False
        state[flag_key] = True
        return True
