from enum import StrEnum


class LinkState(StrEnum):
    """
    Lifecycle shared by Connection and Server.

        created -> running -> shutting_down -> terminated

    `created -> running` happens on start(). `running -> shutting_down`
    happens on stop()/close(), on peer or transport-triggered termination,
    or on an unrecoverable error. `shutting_down -> terminated` happens once
    resources are closed and listeners notified. No transition goes back, so
    a component can be started at most once.
    """
    created = "created"
    running = "running"
    shutting_down = "shutting_down"
    terminated = "terminated"
