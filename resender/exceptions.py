"""
Exceptions raised while resending a batch of messages
"""


class ResendError(Exception):
    """Base class for failures that end a resend batch"""


class BindError(ResendError):
    """Exclusive consumer binding (or target lookup) refused; no transaction was opened"""


class ReceiveShortfall(ResendError):
    """Source queue ran dry before the requested count was read"""

    def __init__(self, received, requested):
        super().__init__(f"No message read from queue after {received} of {requested} messages")
        self.received = received
        self.requested = requested


class DestinationMismatch(ResendError):
    """Message was originally sent to a different queue than the resend target"""

    def __init__(self, original, target):
        super().__init__(f"Original queue: {original} differs to re-send queue: {target}")
        self.original = original
        self.target = target


class PublishError(ResendError):
    """Staging a send on the transactional producer failed"""


class CommitError(ResendError):
    """Broker rejected the commit after all sends were staged.

    The batch state is unknown: messages are neither confirmed removed from
    the source nor confirmed present at the destination.
    """


class FlowAborted(ResendError):
    """The source consumer binding stopped being active mid-batch"""

    def __init__(self, state):
        super().__init__(f"Source binding is no longer active (state: {state})")
        self.state = state


class TransactionClosedError(RuntimeError):
    """commit() or rollback() called on a transaction that already ended"""
