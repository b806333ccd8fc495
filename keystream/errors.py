"""
Domain exceptions for the keystream service.

Routes translate these into HTTP errors; nothing here is fatal to the
process.
"""


class KeystreamError(Exception):
    """Base exception for keystream errors"""
    pass


class RelayIngestError(KeystreamError):
    """An external item could not be turned into a relay job"""
    pass


class DuplicateItemError(RelayIngestError):
    """The item was already ingested with the same content"""

    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(f"Item {external_id} is unchanged since it was last ingested")


class EmptyItemError(RelayIngestError):
    """The item has no title or text to type out"""

    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(f"Item {external_id} has no content to relay")
