"""Failure taxonomy of the checkout and fulfillment flow."""


class StoreError(Exception):
    """Base class for every domain failure raised by the store."""


class SignatureInvalid(StoreError):
    """A push event could not be authenticated against the shared secret."""


class VerificationFailed(StoreError):
    """The provider's report does not match what the ledger expects."""


class PendingPaymentNotFound(StoreError):
    """No ledger entry exists for an external payment id.

    Either the id is forged or a ledger write was lost; both need an operator.
    """

    def __init__(self, external_id):
        super().__init__(f"No pending payment for {external_id}")
        self.external_id = external_id


class InvalidOrderTotal(StoreError):
    pass


class EmptyCart(StoreError):
    pass


class ProviderQueryError(StoreError):
    """A server-to-server status query could not produce an answer."""


class ProvisioningSinkError(StoreError):
    """Pushing a code to the game server failed."""


class NotificationError(StoreError):
    pass


class CodeGenerationError(StoreError):
    """No unused redemption code could be generated."""
